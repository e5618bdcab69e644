"""Spending and income summaries over the transaction store."""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from finwise.db.sqlite import Database
from finwise.models import TransactionType

logger = logging.getLogger(__name__)

# Window used when no calendar month is requested
ROLLING_WINDOW_DAYS = 30


@dataclass
class SpendingSummary:
    """Totals for one period."""

    period_start: date
    period_end: date
    total_spending: float
    total_income: float
    category_totals: dict[str, float] = field(default_factory=dict)
    latest_balance: float | None = None


def month_range(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    if month < 1 or month > 12:
        raise ValueError("Month must be between 1 and 12")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def previous_month(today: date) -> tuple[int, int]:
    first = today.replace(day=1) - timedelta(days=1)
    return first.year, first.month


class InsightsService:
    """Aggregates for dashboards: per-month totals, accounts and merchants."""

    def __init__(self, db: Database):
        self.db = db

    def period(self, year: int | None = None, month: int | None = None, today: date | None = None) -> tuple[date, date]:
        """A calendar month when both parts are given, else the last 30 days."""
        if year is not None and month is not None:
            return month_range(year, month)
        today = today or datetime.now().date()
        return today - timedelta(days=ROLLING_WINDOW_DAYS), today

    def monthly_spending(self, year: int | None = None, month: int | None = None) -> dict[str, float]:
        """Debit totals by category."""
        return self.db.get_category_totals(*self.period(year, month))

    def monthly_income(self, year: int | None = None, month: int | None = None) -> float:
        return self.db.get_total(TransactionType.CREDIT, *self.period(year, month))

    def monthly_total_spending(self, year: int | None = None, month: int | None = None) -> float:
        return self.db.get_total(TransactionType.DEBIT, *self.period(year, month))

    def last_month_spending(self, today: date | None = None) -> float:
        year, month = previous_month(today or datetime.now().date())
        return self.monthly_total_spending(year, month)

    def latest_balance(self) -> float | None:
        return self.db.get_latest_balance()

    def unique_accounts(self) -> dict[str, int]:
        return self.db.get_unique_accounts()

    def top_merchants(self, limit: int = 10) -> list[str]:
        return self.db.get_top_merchants(limit)

    def available_months(self) -> list[date]:
        return self.db.get_available_months()

    def summary(self, year: int | None = None, month: int | None = None) -> SpendingSummary:
        """Spending, income and category split for a month or the rolling window."""
        start_date, end_date = self.period(year, month)
        summary = SpendingSummary(
            period_start=start_date,
            period_end=end_date,
            total_spending=self.monthly_total_spending(year, month),
            total_income=self.monthly_income(year, month),
            category_totals=self.monthly_spending(year, month),
            latest_balance=self.latest_balance(),
        )
        logger.debug(f"Summary {start_date} to {end_date}: spent {summary.total_spending:.2f}")
        return summary
