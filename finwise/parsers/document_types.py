"""Schemas for LLM-produced transaction JSON."""

import re
from datetime import date as date_type, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_MODEL_CONFIDENCE = 0.8

_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d-%b-%y", "%d-%b-%Y", "%b %d, %Y", "%d %b %Y")


def _coerce_number(value):
    """Accept numbers given as strings, with currency symbols or thousands separators."""
    if value is None or isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d.\-]", "", value.replace(",", ""))
        if not cleaned:
            return None
        return float(cleaned)
    return value


def _coerce_date(value):
    if value is None or isinstance(value, (date_type, datetime)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text or text.lower() in ("null", "none", "unknown"):
            return None
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text[:20].strip(), fmt).date()
            except ValueError:
                continue
        # Unparseable dates are dropped; the caller falls back to the received time
        return None
    return value


def _blank_to_none(value):
    if isinstance(value, str) and value.strip().lower() in ("", "null", "none", "n/a"):
        return None
    return value


class StructuredTransaction(BaseModel):
    """The structuring step's JSON contract for a single notification."""

    transaction_id: str | None = None
    amount: float = Field(..., ge=0)
    merchant: str | None = None
    type: Literal["debit", "credit"]
    category: str | None = None
    date: date_type | None = None
    currency: str | None = None  # None means the base currency
    account_last_digits: str | None = None
    confidence: float = DEFAULT_MODEL_CONFIDENCE

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value):
        value = _coerce_number(value)
        if value is None:
            raise ValueError("amount is required")
        return abs(value)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value):
        return _coerce_date(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value):
        value = _blank_to_none(value)
        return value.strip().upper() if isinstance(value, str) else None

    @field_validator("transaction_id", "merchant", "category", mode="before")
    @classmethod
    def _optional_text(cls, value):
        value = _blank_to_none(value)
        if isinstance(value, (int, float)):
            return str(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("account_last_digits", mode="before")
    @classmethod
    def _account(cls, value):
        value = _blank_to_none(value)
        if isinstance(value, int):
            value = str(value)
        if isinstance(value, str):
            value = value.strip().upper()
            if value == "XUPI":
                return value
            digits = re.sub(r"\D", "", value)
            return digits[-4:] if len(digits) >= 4 else None
        return value

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value):
        try:
            value = _coerce_number(value)
        except ValueError:
            return DEFAULT_MODEL_CONFIDENCE
        if value is None:
            return DEFAULT_MODEL_CONFIDENCE
        return max(0.0, min(1.0, value))


class VisionCandidate(BaseModel):
    """One transaction row read from a statement page image."""

    date: date_type | None = None
    description: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)
    type: Literal["debit", "credit"] = "debit"
    category: str | None = None
    currency: str | None = None  # None means the base currency
    confidence: float = DEFAULT_MODEL_CONFIDENCE

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value):
        value = _coerce_number(value)
        if value is None:
            raise ValueError("amount is required")
        return abs(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value):
        value = _blank_to_none(value)
        if value is None:
            return "debit"
        value = str(value).strip().lower()
        if value in ("cr", "credit"):
            return "credit"
        if value in ("dr", "debit"):
            return "debit"
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value):
        return _coerce_date(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value):
        value = _blank_to_none(value)
        return value.strip().upper() if isinstance(value, str) else None

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value):
        return _blank_to_none(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value):
        try:
            value = _coerce_number(value)
        except ValueError:
            return DEFAULT_MODEL_CONFIDENCE
        if value is None:
            return DEFAULT_MODEL_CONFIDENCE
        return max(0.0, min(1.0, value))
