"""Data models for FinWise."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

UNKNOWN_MERCHANT = "Unknown Merchant"
UNCATEGORIZED = "Uncategorized"

# Reserved account suffix for UPI-only transactions (no card/account number present)
UPI_ACCOUNT_MARKER = "XUPI"

DEFAULT_CATEGORIES = [
    "Food & Dining",
    "Groceries",
    "Transportation",
    "Shopping",
    "Bills & Utilities",
    "Entertainment",
    "Healthcare",
    "Travel",
    "Education",
    "Income",
    "Transfer",
    "Other",
    UNCATEGORIZED,
]


class TransactionType(str, Enum):
    """Direction of money from the account holder's perspective."""

    DEBIT = "debit"
    CREDIT = "credit"
    UNKNOWN = "unknown"


class ExtractionMethod(str, Enum):
    """How a ParsingResult was produced."""

    PRIMARY_MODEL = "primary_model"
    DETERMINISTIC = "deterministic"
    MANUAL = "manual"


class Frequency(str, Enum):
    """Recurring payment frequency classes."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class Transaction(BaseModel):
    """A financial transaction extracted from a notification."""

    id: UUID = Field(default_factory=uuid4)
    raw_text: str
    source_id: str | None = None  # Stable id of the originating SMS/email
    amount: float | None = Field(default=None, ge=0)  # Base currency; sign lives in `type`
    type: TransactionType = TransactionType.UNKNOWN
    merchant: str = UNKNOWN_MERCHANT
    category: str = UNCATEGORIZED
    account_suffix: str | None = None  # Last 4 digits, UPI_ACCOUNT_MARKER, or None
    balance: float | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
    is_parsed: bool = False
    is_manually_edited: bool = False
    transaction_id: str | None = None  # External reference (UPI ref, UTR, ...)
    extraction_method: str = "deterministic"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extraction_error: str | None = None
    original_currency: str | None = None
    original_amount: float | None = Field(default=None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _naive_local_timestamp(cls, value: datetime) -> datetime:
        # Stored and compared as naive local time
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def _check_original_amount(self) -> "Transaction":
        if self.original_currency and self.original_amount is None:
            raise ValueError("original_amount is required when original_currency is set")
        return self


class ParsingResult(BaseModel):
    """Outcome of one extraction attempt. Not persisted."""

    success: bool
    method: ExtractionMethod
    transaction: Transaction | None = None
    error: str | None = None
    elapsed_seconds: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    model_name: str | None = None
    raw_response: str | None = None
    diagnostics: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_primary(
        cls,
        transaction: Transaction,
        model_name: str,
        raw_response: str,
        elapsed_seconds: float,
    ) -> "ParsingResult":
        return cls(
            success=True,
            method=ExtractionMethod.PRIMARY_MODEL,
            transaction=transaction,
            elapsed_seconds=elapsed_seconds,
            confidence=transaction.confidence,
            model_name=model_name,
            raw_response=raw_response,
            diagnostics={"model": model_name, "response": raw_response},
        )

    @classmethod
    def from_deterministic(
        cls,
        transaction: Transaction,
        matched_fields: list[str],
        elapsed_seconds: float,
        error: str | None = None,
    ) -> "ParsingResult":
        return cls(
            success=transaction.is_parsed,
            method=ExtractionMethod.DETERMINISTIC,
            transaction=transaction,
            error=error,
            elapsed_seconds=elapsed_seconds,
            confidence=len(matched_fields) / 6,
            diagnostics={"matched_fields": matched_fields},
        )

    @classmethod
    def manual(cls, transaction: Transaction) -> "ParsingResult":
        return cls(
            success=True,
            method=ExtractionMethod.MANUAL,
            transaction=transaction,
            confidence=1.0,
        )


class RecurringTransaction(BaseModel):
    """A detected periodic payment, one per merchant."""

    id: UUID = Field(default_factory=uuid4)
    merchant: str
    category: str = UNCATEGORIZED
    average_amount: float
    average_interval_days: float
    first_occurrence: datetime
    last_occurrence: datetime
    next_expected_date: datetime | None = None
    occurrence_count: int
    is_active: bool = True
    frequency: Frequency = Frequency.CUSTOM
    confidence: float = Field(ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def is_overdue(self, now: datetime | None = None) -> bool:
        if self.next_expected_date is None:
            return False
        return self.next_expected_date < (now or datetime.now())


class ExchangeRateCacheEntry(BaseModel):
    """Cached rate: 1 unit of base currency = `rate` units of `currency`."""

    currency: str
    rate: float
    last_updated: datetime


class IncomingMessage(BaseModel):
    """A raw SMS or email handed to the ingestion service."""

    source_id: str
    body: str
    subject: str | None = None
    snippet: str | None = None
    received_at: datetime | None = None


class IngestResult(BaseModel):
    """Result of ingesting a single message."""

    source_id: str
    status: str  # "added", "duplicate", "already_processed"
    transaction: Transaction | None = None
    method: ExtractionMethod | None = None
    error: str | None = None


class BatchIngestSummary(BaseModel):
    """Summary of a batch ingestion run."""

    job_id: str | None = None  # Key for GET /progress/{job_id}
    processed: int = 0
    added: int = 0
    duplicates: int = 0
    already_processed: int = 0
    failed: int = 0
    unparsed: int = 0
    remaining_source_ids: list[str] = Field(default_factory=list)
    stopped_early: bool = False
    elapsed_seconds: float = 0.0


class VisionPageResult(BaseModel):
    """Transactions recovered from one rendered statement page."""

    page_number: int
    transactions: list[Transaction] = Field(default_factory=list)
    skipped: int = 0
    error: str | None = None
    model_name: str | None = None
    elapsed_seconds: float = 0.0


class RecurringStatistics(BaseModel):
    """Aggregate view of active recurring payments."""

    total: int
    upcoming: int
    overdue: int
    total_monthly_amount: float


# API request/response models


class ParseRequest(BaseModel):
    """Request to parse a single notification without storing it."""

    text: str = Field(min_length=1)
    subject: str | None = None


class IngestRequest(BaseModel):
    """Request to ingest (parse and store) notifications."""

    messages: list[IncomingMessage]
    job_id: str | None = None


class TransactionUpdate(BaseModel):
    """User edit of a stored transaction."""

    category: str | None = None
    merchant: str | None = None


class ManualTransactionCreate(BaseModel):
    """A transaction entered by hand."""

    amount: float = Field(..., ge=0)
    type: TransactionType
    merchant: str = Field(min_length=1)
    category: str | None = None
    account_suffix: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
    note: str | None = None


class DateRange(BaseModel):
    """Inclusive date range for bulk deletion."""

    start_date: date
    end_date: date


class StatementUploadResponse(BaseModel):
    """Response after processing a statement PDF."""

    filename: str
    job_id: str
    pages: int
    transactions_found: int
    transactions_added: int
    duplicates_skipped: int
    errors: list[str] = Field(default_factory=list)
