"""Tests for spending summaries and store aggregates."""

from datetime import date, datetime

import pytest

from finwise.models import UPI_ACCOUNT_MARKER, Transaction, TransactionType
from finwise.services.dedup import compute_text_hash
from finwise.services.insights import InsightsService, month_range, previous_month


def txn(merchant, amount, day, txn_type=TransactionType.DEBIT, category="Food & Dining", **extra) -> Transaction:
    return Transaction(
        raw_text=f"{merchant} {amount} {day.isoformat()}",
        amount=amount,
        type=txn_type,
        merchant=merchant,
        category=category,
        timestamp=day,
        is_parsed=amount is not None,
        **extra,
    )


@pytest.fixture
def service(db) -> InsightsService:
    for transaction in [
        txn(
            "Employer",
            50000.0,
            datetime(2025, 9, 1, 9),
            TransactionType.CREDIT,
            "Income",
            account_suffix="1234",
            balance=60000.0,
        ),
        txn("Zomato", 400.0, datetime(2025, 9, 5, 20), account_suffix="2008", balance=10000.0),
        txn("Swiggy", 250.0, datetime(2025, 9, 10, 13), account_suffix="2008"),
        txn("Netflix", 649.0, datetime(2025, 9, 15, 8), category="Entertainment", account_suffix=UPI_ACCOUNT_MARKER),
        Transaction(raw_text="Your OTP is 482913", timestamp=datetime(2025, 9, 20, 10)),
        txn("Zomato", 300.0, datetime(2025, 10, 2, 12), account_suffix="2008", balance=9000.0),
    ]:
        db.add_transaction(transaction, compute_text_hash(transaction.raw_text))
    return InsightsService(db)


class TestPeriods:
    """Date range helpers."""

    def test_month_range(self):
        assert month_range(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_range(2025, 12) == (date(2025, 12, 1), date(2025, 12, 31))

    def test_invalid_month(self):
        with pytest.raises(ValueError):
            month_range(2025, 13)

    def test_previous_month_wraps_year(self):
        assert previous_month(date(2025, 1, 15)) == (2024, 12)

    def test_rolling_window(self, db):
        start, end = InsightsService(db).period(today=date(2025, 10, 15))
        assert (start, end) == (date(2025, 9, 15), date(2025, 10, 15))


class TestMonthlyTotals:
    """Spending and income per period."""

    def test_spending_by_category(self, service):
        assert service.monthly_spending(2025, 9) == {"Food & Dining": 650.0, "Entertainment": 649.0}

    def test_totals(self, service):
        assert service.monthly_total_spending(2025, 9) == 1299.0
        assert service.monthly_income(2025, 9) == 50000.0
        assert service.monthly_total_spending(2025, 10) == 300.0

    def test_empty_month(self, service):
        assert service.monthly_spending(2024, 1) == {}
        assert service.monthly_income(2024, 1) == 0.0

    def test_last_month(self, service):
        assert service.last_month_spending(today=date(2025, 10, 15)) == 1299.0

    def test_summary(self, service):
        summary = service.summary(2025, 9)

        assert summary.period_start == date(2025, 9, 1)
        assert summary.period_end == date(2025, 9, 30)
        assert summary.total_spending == 1299.0
        assert summary.total_income == 50000.0
        assert list(summary.category_totals) == ["Food & Dining", "Entertainment"]


class TestStoreAggregates:
    """Balances, accounts, merchants and months."""

    def test_latest_balance(self, service):
        assert service.latest_balance() == 9000.0

    def test_latest_balance_without_any(self, db):
        assert InsightsService(db).latest_balance() is None

    def test_unique_accounts_skip_upi_marker(self, service):
        accounts = service.unique_accounts()
        assert accounts == {"2008": 3, "1234": 1}
        assert list(accounts) == ["2008", "1234"]

    def test_top_merchants(self, service):
        assert service.top_merchants(limit=2) == ["Zomato", "Employer"]
        assert "Unknown Merchant" not in service.top_merchants()

    def test_available_months(self, service):
        assert service.available_months() == [date(2025, 10, 1), date(2025, 9, 1)]
