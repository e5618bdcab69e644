"""
Tests for recurring payment detection.

These tests ensure that:
1. Only steady, repeated debits are reported
2. Frequencies are bucketed from the mean interval
3. Saved patterns are upserted by merchant and can be managed
"""

from datetime import datetime, timedelta, timezone

from finwise.models import UNKNOWN_MERCHANT, Frequency, Transaction, TransactionType
from finwise.services.dedup import compute_text_hash
from finwise.services.recurring import RecurringService, analyze_group, classify_frequency, detect_recurring

START = datetime(2025, 1, 1, 9, 0)


def payments(merchant: str, gaps: list[int], amount: float = 499.0, **overrides) -> list[Transaction]:
    """One payment at START, then one after each gap (in days)."""
    timestamps = [START]
    for gap in gaps:
        timestamps.append(timestamps[-1] + timedelta(days=gap))
    values = {"type": TransactionType.DEBIT, "category": "Entertainment", "is_parsed": True}
    values.update(overrides)
    return [
        Transaction(raw_text=f"{merchant} payment {i}", amount=amount, merchant=merchant, timestamp=ts, **values)
        for i, ts in enumerate(timestamps)
    ]


class TestClassifyFrequency:
    """Test frequency buckets."""

    def test_buckets(self):
        assert classify_frequency(1) == Frequency.DAILY
        assert classify_frequency(7.2) == Frequency.WEEKLY
        assert classify_frequency(14) == Frequency.BIWEEKLY
        assert classify_frequency(30.4) == Frequency.MONTHLY
        assert classify_frequency(91) == Frequency.QUARTERLY
        assert classify_frequency(365) == Frequency.YEARLY

    def test_gaps_between_buckets_are_custom(self):
        assert classify_frequency(10) == Frequency.CUSTOM
        assert classify_frequency(45) == Frequency.CUSTOM


class TestAnalyzeGroup:
    """Test the per-merchant gates and scoring."""

    def test_two_occurrences_are_not_enough(self):
        assert analyze_group("Netflix", payments("Netflix", [30])) is None

    def test_irregular_interval_is_rejected(self):
        assert analyze_group("Netflix", payments("Netflix", [30, 31, 45])) is None

    def test_steady_monthly_payment(self):
        txns = payments("Netflix", [30, 31, 29])

        recurring = analyze_group("Netflix", txns)

        assert recurring is not None
        assert recurring.frequency == Frequency.MONTHLY
        assert recurring.occurrence_count == 4
        assert recurring.average_amount == 499.0
        assert recurring.average_interval_days == 30.0
        assert recurring.next_expected_date == txns[-1].timestamp + timedelta(days=30)
        assert 0.6 <= recurring.confidence <= 1.0

    def test_confidence_includes_amount_stability(self):
        steady = analyze_group("Gym", payments("Gym", [30, 30, 30]))
        varying = [
            txn.model_copy(update={"amount": amount})
            for txn, amount in zip(payments("Gym", [30, 30, 30]), [400.0, 900.0, 400.0, 900.0])
        ]

        assert analyze_group("Gym", varying).confidence < steady.confidence

    def test_same_day_group_is_skipped(self):
        assert analyze_group("Shop", payments("Shop", [0, 0, 0])) is None


class TestDetectRecurring:
    """Test grouping of the transaction history."""

    def test_credits_are_ignored(self):
        txns = payments("Employer", [30, 31, 30], amount=50000.0, type=TransactionType.CREDIT)
        assert detect_recurring(txns) == []

    def test_unknown_merchant_is_ignored(self):
        assert detect_recurring(payments(UNKNOWN_MERCHANT, [30, 30, 30])) == []

    def test_one_pattern_per_merchant(self):
        txns = payments("Netflix", [30, 31, 29]) + payments("Airtel", [28, 28, 28], amount=299.0)
        merchants = {r.merchant for r in detect_recurring(txns)}
        assert merchants == {"Netflix", "Airtel"}


class TestRecurringService:
    """Test the store-backed service."""

    @staticmethod
    def _store(db, txns):
        for txn in txns:
            db.add_transaction(txn, compute_text_hash(txn.raw_text))

    def test_refresh_saves_and_upserts_by_merchant(self, db):
        self._store(db, payments("Netflix", [30, 31, 29]))
        service = RecurringService(db)

        first = service.refresh()
        second = service.refresh()

        assert len(first) == 1
        assert second[0].id == first[0].id
        assert len(service.get_active()) == 1

    def test_refresh_with_timezone_aware_entry(self, db):
        """An offset-carrying timestamp is stored as local time and sorts with the rest."""
        txns = payments("Netflix", [30, 31])
        aware = (txns[-1].timestamp + timedelta(days=29)).replace(tzinfo=timezone.utc)
        txns.append(
            Transaction(
                raw_text="Netflix payment 3",
                amount=499.0,
                merchant="Netflix",
                type=TransactionType.DEBIT,
                category="Entertainment",
                is_parsed=True,
                timestamp=aware,
            )
        )
        assert txns[-1].timestamp == aware.astimezone().replace(tzinfo=None)
        self._store(db, txns)

        recurring = RecurringService(db).refresh()

        assert len(recurring) == 1
        assert recurring[0].occurrence_count == 4
        assert recurring[0].last_occurrence.tzinfo is None

    def test_mark_inactive_and_delete(self, db):
        self._store(db, payments("Netflix", [30, 31, 29]))
        service = RecurringService(db)
        recurring = service.refresh()[0]

        assert service.mark_inactive(recurring.id) is True
        assert service.get_active() == []
        assert service.delete(recurring.id) is True
        assert service.delete(recurring.id) is False

    def test_upcoming_overdue_and_statistics(self, db):
        txns = payments("Netflix", [30, 31, 29])
        self._store(db, txns)
        service = RecurringService(db)
        service.refresh()
        last = txns[-1].timestamp

        assert len(service.get_upcoming(days=7, now=last + timedelta(days=25))) == 1
        assert service.get_upcoming(days=7, now=last + timedelta(days=5)) == []
        assert len(service.get_overdue(now=last + timedelta(days=31))) == 1

        stats = service.statistics(now=last + timedelta(days=31))
        assert stats.total == 1
        assert stats.overdue == 1
        assert stats.upcoming == 0
        assert stats.total_monthly_amount == 499.0
