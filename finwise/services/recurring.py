"""Recurring payment detection.

Sweeps stored debit transactions, groups them by merchant and keeps the groups
whose payments arrive at a steady interval with a steady amount.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from uuid import UUID

from finwise.db.sqlite import Database
from finwise.models import (
    UNKNOWN_MERCHANT,
    Frequency,
    RecurringStatistics,
    RecurringTransaction,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

MIN_OCCURRENCES = 3
INTERVAL_TOLERANCE = 0.2  # Every gap must be within +/-20% of the mean gap
MIN_CONFIDENCE = 0.6
OCCURRENCE_SATURATION = 12

# (low, high, frequency) over the rounded mean interval in days
FREQUENCY_BUCKETS = [
    (1, 2, Frequency.DAILY),
    (6, 8, Frequency.WEEKLY),
    (13, 16, Frequency.BIWEEKLY),
    (28, 32, Frequency.MONTHLY),
    (88, 92, Frequency.QUARTERLY),
    (360, 370, Frequency.YEARLY),
]

# Approximate payments per month, for the monthly total
MONTHLY_MULTIPLIER = {
    Frequency.DAILY: 30.0,
    Frequency.WEEKLY: 30.0 / 7,
    Frequency.BIWEEKLY: 30.0 / 14,
    Frequency.MONTHLY: 1.0,
    Frequency.QUARTERLY: 1.0 / 3,
    Frequency.YEARLY: 1.0 / 12,
}


def classify_frequency(interval_days: float) -> Frequency:
    days = round(interval_days)
    for low, high, frequency in FREQUENCY_BUCKETS:
        if low <= days <= high:
            return frequency
    return Frequency.CUSTOM


def _mean_absolute_deviation(values: list[float], mean: float) -> float:
    return sum(abs(v - mean) for v in values) / len(values)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def analyze_group(merchant: str, transactions: list[Transaction]) -> RecurringTransaction | None:
    """Score one merchant's debits. Returns None when they don't look periodic."""
    if len(transactions) < MIN_OCCURRENCES:
        return None

    ordered = sorted(transactions, key=lambda t: t.timestamp)
    intervals = [
        float((later.timestamp - earlier.timestamp).days) for earlier, later in zip(ordered, ordered[1:])
    ]
    mean_interval = sum(intervals) / len(intervals)
    if mean_interval <= 0:
        return None

    tolerance = mean_interval * INTERVAL_TOLERANCE
    if any(abs(gap - mean_interval) > tolerance for gap in intervals):
        return None

    amounts = [t.amount or 0.0 for t in ordered]
    mean_amount = sum(amounts) / len(amounts)

    occurrence_score = min(len(ordered) / OCCURRENCE_SATURATION, 1.0)
    interval_score = _clamp(1 - _mean_absolute_deviation(intervals, mean_interval) / mean_interval)
    amount_score = (
        _clamp(1 - _mean_absolute_deviation(amounts, mean_amount) / mean_amount) if mean_amount > 0 else 0.0
    )
    confidence = 0.3 * occurrence_score + 0.4 * interval_score + 0.3 * amount_score

    if confidence < MIN_CONFIDENCE:
        logger.debug(f"Rejected {merchant}: confidence {confidence:.2f}")
        return None

    last = ordered[-1]
    return RecurringTransaction(
        merchant=merchant,
        category=last.category,
        average_amount=round(mean_amount, 2),
        average_interval_days=mean_interval,
        first_occurrence=ordered[0].timestamp,
        last_occurrence=last.timestamp,
        next_expected_date=last.timestamp + timedelta(days=round(mean_interval)),
        occurrence_count=len(ordered),
        frequency=classify_frequency(mean_interval),
        confidence=confidence,
    )


def detect_recurring(transactions: list[Transaction]) -> list[RecurringTransaction]:
    """Find periodic debit patterns, one per merchant."""
    groups: dict[str, list[Transaction]] = defaultdict(list)
    for txn in transactions:
        if txn.type != TransactionType.DEBIT or txn.amount is None:
            continue
        merchant = txn.merchant.strip()
        if not merchant or merchant == UNKNOWN_MERCHANT:
            continue
        groups[merchant].append(txn)

    results = []
    for merchant, group in groups.items():
        recurring = analyze_group(merchant, group)
        if recurring:
            results.append(recurring)

    results.sort(key=lambda r: r.confidence, reverse=True)
    return results


class RecurringService:
    """Runs detection over the store and manages saved patterns."""

    def __init__(self, db: Database):
        self.db = db

    def refresh(self) -> list[RecurringTransaction]:
        """Re-detect patterns from every stored transaction and upsert them by merchant."""
        detected = detect_recurring(self.db.get_transactions_chronological())
        saved = [self.db.upsert_recurring(r) for r in detected]
        logger.info(f"Recurring detection: {len(saved)} patterns saved")
        return saved

    def get_active(self) -> list[RecurringTransaction]:
        return self.db.get_recurring(active_only=True)

    def get_upcoming(self, days: int = 7, now: datetime | None = None) -> list[RecurringTransaction]:
        """Active patterns expected within the next `days` days."""
        now = now or datetime.now()
        horizon = now + timedelta(days=days)
        return [
            r
            for r in self.get_active()
            if r.next_expected_date is not None and now <= r.next_expected_date <= horizon
        ]

    def get_overdue(self, now: datetime | None = None) -> list[RecurringTransaction]:
        now = now or datetime.now()
        return [r for r in self.get_active() if r.is_overdue(now)]

    def mark_inactive(self, recurring_id: UUID) -> bool:
        return self.db.set_recurring_active(recurring_id, False)

    def delete(self, recurring_id: UUID) -> bool:
        return self.db.delete_recurring(recurring_id)

    def statistics(self, now: datetime | None = None) -> RecurringStatistics:
        active = self.get_active()
        monthly = sum(
            r.average_amount * MONTHLY_MULTIPLIER.get(r.frequency, 30.0 / max(r.average_interval_days, 1.0))
            for r in active
        )
        return RecurringStatistics(
            total=len(active),
            upcoming=len(self.get_upcoming(now=now)),
            overdue=len(self.get_overdue(now=now)),
            total_monthly_amount=round(monthly, 2),
        )
