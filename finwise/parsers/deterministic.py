"""Pattern-based transaction field extraction.

Used as the fallback when the model path fails or is disabled, and as the
synchronous quick-parse path. Every field is recovered by an ordered list of
``FieldRule`` objects evaluated first-match-wins; a mapper may return None to
reject a match and let the cascade continue. Transaction type is the
exception: when both directions match, the holder's own instrument decides.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from finwise.models import UNKNOWN_MERCHANT, UPI_ACCOUNT_MARKER, Transaction, TransactionType
from finwise.services.categorizer import CategoryClassifier

logger = logging.getLogger(__name__)

# Fields counted for the deterministic confidence score (matched / 6)
SCORED_FIELDS = ("type", "amount", "merchant", "transaction_id", "date", "account")

FALLBACK_CONFIDENCE_FOUND = 0.7
FALLBACK_CONFIDENCE_EMPTY = 0.3


@dataclass(frozen=True)
class FieldRule:
    """One pattern in a field cascade."""

    name: str
    pattern: re.Pattern
    mapper: Callable[[re.Match], Any]


def first_match(rules: list[FieldRule], text: str) -> tuple[Any, str] | None:
    """Return (value, rule name) for the first rule whose mapper accepts a match."""
    for rule in rules:
        for match in rule.pattern.finditer(text):
            value = rule.mapper(match)
            if value is not None:
                return value, rule.name
    return None


# Amounts

_NUMBER = r"(?P<num>\d+(?:,\d+)*(?:\.\d{1,2})?)"
_CURRENCY_CODES = (
    "INR|USD|EUR|GBP|JPY|CNY|AUD|CAD|CHF|SGD|HKD|AED|SAR|QAR|KWD|OMR|BHD|MYR|THB|IDR|PHP|KRW|VND"
)
_CURRENCY_TOKEN = rf"(?:(?<![A-Za-z])(?:Rs\.?|{_CURRENCY_CODES})(?![A-Za-z])|US\$|₹|\$|€|£|¥)"

CURRENCY_SYMBOLS = {
    "RS": "INR",
    "RUPEES": "INR",
    "₹": "INR",
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
}


def currency_from_token(token: str) -> str:
    cleaned = token.strip().rstrip(".").upper()
    return CURRENCY_SYMBOLS.get(cleaned, cleaned)


def parse_number(value: str) -> float | None:
    try:
        return float(value.replace(",", ""))
    except ValueError:
        return None


def _amount_with_currency(match: re.Match) -> tuple[float, str | None] | None:
    amount = parse_number(match.group("num"))
    if amount is None:
        return None
    cur = match.groupdict().get("cur")
    return amount, currency_from_token(cur) if cur else None


AMOUNT_RULES = [
    FieldRule(
        "currency_prefix",
        re.compile(rf"(?P<cur>{_CURRENCY_TOKEN})\s*{_NUMBER}", re.IGNORECASE),
        _amount_with_currency,
    ),
    FieldRule(
        "currency_suffix",
        re.compile(rf"{_NUMBER}\s*(?P<cur>rupees|{_CURRENCY_TOKEN})", re.IGNORECASE),
        _amount_with_currency,
    ),
    FieldRule(
        "amount_of",
        re.compile(rf"\bamount\s+of\s+{_NUMBER}", re.IGNORECASE),
        _amount_with_currency,
    ),
]

# Transaction type

_INSTRUMENT = r"(?:your|ur|a/c|acct|account|card|credit\s+card|debit\s+card)"


def _const(value: Any) -> Callable[[re.Match], Any]:
    return lambda match: value


# Holder-perspective phrases, checked before the bare keyword sets so that
# "debited from Card XX2008 and credited to Amazon" reads as a debit.
TYPE_RULES = [
    FieldRule(
        "debited_from_holder",
        re.compile(rf"\b(?:debited|deducted|withdrawn)\s+from\s+{_INSTRUMENT}\b", re.IGNORECASE),
        _const(TransactionType.DEBIT),
    ),
    FieldRule("spent", re.compile(r"\bspent\b", re.IGNORECASE), _const(TransactionType.DEBIT)),
    FieldRule(
        "paid_via",
        re.compile(
            r"\b(?:paid|sent|transferred)\s+(?:via|using|from|through|to(?!\s+(?:your|ur)\b))\b", re.IGNORECASE
        ),
        _const(TransactionType.DEBIT),
    ),
    FieldRule(
        "instrument_used",
        re.compile(r"\b(?:card|a/c|account)\b[^.]{0,40}?\bused\s+for\b", re.IGNORECASE),
        _const(TransactionType.DEBIT),
    ),
    FieldRule(
        "instrument_debited",
        re.compile(r"\b(?:a/c|acct|account|card)\b[^.]{0,30}?\b(?:debited|charged)\b", re.IGNORECASE),
        _const(TransactionType.DEBIT),
    ),
    FieldRule(
        "credited_to_holder",
        re.compile(
            rf"\b(?:(?:credited|deposited|received)\s+(?:to|in|into|on)\s+{_INSTRUMENT}"
            r"|(?:transferred|sent)\s+(?:to|into)\s+(?:your|ur))\b",
            re.IGNORECASE,
        ),
        _const(TransactionType.CREDIT),
    ),
    FieldRule(
        "instrument_credited",
        re.compile(r"\b(?:a/c|acct|account|card)\b[^.]{0,30}?\bcredited\b", re.IGNORECASE),
        _const(TransactionType.CREDIT),
    ),
    FieldRule(
        "refund_credited",
        re.compile(r"\brefund\b[^.]*?\bcredited\b", re.IGNORECASE),
        _const(TransactionType.CREDIT),
    ),
    FieldRule(
        "received_amount",
        re.compile(rf"\breceived\s+(?:a\s+payment\s+of\s+)?{_CURRENCY_TOKEN}", re.IGNORECASE),
        _const(TransactionType.CREDIT),
    ),
]

# Keyword fallback: credit set first, then debit
CREDIT_KEYWORDS = ("credited", "credit", "received", "deposited", "refund")
DEBIT_KEYWORDS = ("debited", "debit", "paid", "sent", "withdrawn", "spent", "purchase", "charged")

# Product names that contain type keywords but say nothing about direction
_NEUTRAL_PHRASES = re.compile(r"\b(?:credit|debit)\s+(?:card|limit)\b|\bavailable\s+credit\b", re.IGNORECASE)


# Rules naming the holder's own account or card; they settle debit/credit conflicts
HOLDER_INSTRUMENT_RULES = frozenset(
    {"debited_from_holder", "instrument_debited", "credited_to_holder", "instrument_credited"}
)


def classify_type(text: str) -> tuple[TransactionType, str | None]:
    """Classify debit/credit from the holder's perspective.

    When phrases for both directions match, the earliest phrase that names the
    holder's instrument decides. "Credited to your A/c ... Sent via IMPS" is a
    credit.
    """
    hits = []
    for rule in TYPE_RULES:
        match = rule.pattern.search(text)
        if match:
            hits.append((match.start(), rule.mapper(match), rule.name))

    if hits:
        if len({txn_type for _, txn_type, _ in hits}) > 1:
            holder_hits = [hit for hit in hits if hit[2] in HOLDER_INSTRUMENT_RULES]
            if holder_hits:
                _, txn_type, name = min(holder_hits, key=lambda hit: hit[0])
                return txn_type, name
        _, txn_type, name = hits[0]
        return txn_type, name

    lower = _NEUTRAL_PHRASES.sub(" ", text.lower())
    for keywords, txn_type in ((CREDIT_KEYWORDS, TransactionType.CREDIT), (DEBIT_KEYWORDS, TransactionType.DEBIT)):
        for keyword in keywords:
            if re.search(rf"\b{keyword}\b", lower):
                return txn_type, f"keyword:{keyword}"
    return TransactionType.UNKNOWN, None


# Merchant

_NAME = r"(?P<name>[A-Za-z0-9][A-Za-z0-9 &'._@*/-]{1,40}?)"
_NAME_END = (
    r"(?=\s+(?:on|via|from|ref|upi|using|dated|avl|avbl|with|for|is|has|and)\b"
    r"|\.(?:\s|$)|,|;|\(|\n|\s*$|\s+-)"
)

_REJECT_FIRST_WORDS = {
    "your", "ur", "my", "the", "a", "an", "you", "this", "that", "we", "us", "be",
    "transaction", "txn", "payment", "purchase", "amount", "rs", "inr", "card", "a/c",
    "ac", "acct", "account", "self", "bank",
}
_TIME_OR_NUMBER = re.compile(r"^[\d:.,/\s-]+(?:am|pm|hrs)?$", re.IGNORECASE)
_MASKED_REF = re.compile(r"^[Xx*]{2,}\d+$")

BRAND_NAMES = (
    "SWIGGY", "ZOMATO", "UBER", "OLA", "RAPIDO", "AMAZON", "FLIPKART", "MYNTRA", "AJIO",
    "NETFLIX", "HOTSTAR", "SPOTIFY", "AIRTEL", "JIO", "VODAFONE", "BSNL", "APOLLO",
    "PHARMEASY", "IRCTC", "MAKEMYTRIP", "GOIBIBO", "OYO", "BIGBASKET", "BLINKIT", "ZEPTO",
    "DMART", "BOOKMYSHOW", "STARBUCKS", "DOMINOS", "PAYTM", "PHONEPE",
)

_UPI_FILLER = {"UPI", "P2M", "P2A", "DR", "CR", "PAY", "COLLECT"}


def _plausible_merchant(name: str) -> str | None:
    name = re.sub(r"\s+", " ", name).strip(" .,:;-/*")
    if len(name) < 2 or not re.search(r"[A-Za-z]", name):
        return None
    if _TIME_OR_NUMBER.match(name) or _MASKED_REF.match(name):
        return None
    first_word = name.split(" ", 1)[0].lower().rstrip(".:")
    if first_word in _REJECT_FIRST_WORDS:
        return None
    return name


def _name_from_upi_info(value: str) -> str | None:
    """'UPI-532029754318-PARAS SI' -> 'PARAS SI'."""
    for part in re.split(r"[-/]", value):
        part = part.strip()
        if part and re.search(r"[A-Za-z]", part) and part.upper() not in _UPI_FILLER:
            return part
    return None


def _merchant_from_info(match: re.Match) -> str | None:
    value = match.group("name").strip()
    if value.upper().startswith("UPI"):
        value = _name_from_upi_info(value) or ""
    return _plausible_merchant(value)


def _merchant_from_name(match: re.Match) -> str | None:
    return _plausible_merchant(match.group("name"))


MERCHANT_RULES = [
    FieldRule(
        "at_to_for",
        re.compile(rf"\b(?:at|to|towards|for)\s+{_NAME}{_NAME_END}", re.IGNORECASE),
        _merchant_from_name,
    ),
    FieldRule(
        "info_field",
        re.compile(
            r"\b(?:Info|Descr|Description|Narration|Remarks|Merchant(?:\s+Name)?)\s*[:\-]\s*"
            r"(?P<name>(?:[^.\n;]|\.(?=\S))+)",
            re.IGNORECASE,
        ),
        _merchant_from_info,
    ),
    FieldRule(
        "upi_vpa",
        re.compile(r"(?P<name>[A-Za-z0-9][\w.\-]*@[A-Za-z][A-Za-z0-9.]*)"),
        _merchant_from_name,
    ),
    FieldRule(
        "card_pos",
        re.compile(rf"\bPOS\s*(?:txn|transaction)?\s*[:\-]?\s*{_NAME}{_NAME_END}", re.IGNORECASE),
        _merchant_from_name,
    ),
    FieldRule(
        "from_sender",
        re.compile(rf"\bfrom\s+{_NAME}{_NAME_END}", re.IGNORECASE),
        _merchant_from_name,
    ),
]


def match_brand(text: str) -> str | None:
    upper = text.upper()
    for brand in BRAND_NAMES:
        if re.search(rf"(?<![A-Z]){brand}(?![A-Z])", upper):
            return brand
    return None


def clean_merchant_name(name: str) -> str:
    """Collapse whitespace and title-case, leaving UPI handles as written."""
    name = re.sub(r"\s+", " ", name).strip(" .,:;-")
    if "@" in name:
        return name.lower()
    return " ".join(word[:1].upper() + word[1:].lower() for word in name.split(" "))


# Account suffix

_MASK = r"(?:[Xx*]+)?\d*?"

ACCOUNT_RULES = [
    FieldRule(
        "card_suffix",
        re.compile(
            rf"\bcard\s*(?:no\.?|number|ending(?:\s+(?:with|in))?)?\s*[:#]?\s*{_MASK}(?P<digits>\d{{4}})\b",
            re.IGNORECASE,
        ),
        lambda m: m.group("digits"),
    ),
    FieldRule(
        "account_suffix",
        re.compile(
            rf"\b(?:a/c|acct|account|ac)\.?\s*(?:no\.?|number|ending(?:\s+(?:with|in))?)?\s*[:#]?\s*"
            rf"{_MASK}(?P<digits>\d{{4}})\b",
            re.IGNORECASE,
        ),
        lambda m: m.group("digits"),
    ),
    FieldRule(
        "masked_number",
        re.compile(r"(?<![A-Za-z0-9])[Xx*]{2,}(?P<digits>\d{4})\b"),
        lambda m: m.group("digits"),
    ),
    FieldRule(
        "upi_marker",
        re.compile(
            r"\bUPI\b|@(?:ybl|paytm|oksbi|okaxis|okicici|okhdfcbank|axl|ibl|upi|apl|icici|axisbank)\b",
            re.IGNORECASE,
        ),
        _const(UPI_ACCOUNT_MARKER),
    ),
]

# Balance

BALANCE_RULES = [
    FieldRule(
        "available_balance",
        re.compile(
            rf"\b(?:avbl|avl|available)\.?\s*(?:bal|balance)\.?\s*(?:is)?\s*[:\-]?\s*"
            rf"(?:{_CURRENCY_TOKEN})?\s*{_NUMBER}",
            re.IGNORECASE,
        ),
        lambda m: parse_number(m.group("num")),
    ),
    FieldRule(
        "balance_is",
        re.compile(rf"\bbalance\s+(?:is|:)\s*(?:{_CURRENCY_TOKEN})?\s*{_NUMBER}", re.IGNORECASE),
        lambda m: parse_number(m.group("num")),
    ),
]

# Transaction id

TRANSACTION_ID_RULES = [
    FieldRule(
        "upi_reference",
        re.compile(
            r"\bUPI[-/:\s]*(?:ref(?:erence)?\.?\s*(?:no\.?|number)?\s*[:\-]?\s*)?(?P<id>\d{8,})",
            re.IGNORECASE,
        ),
        lambda m: m.group("id"),
    ),
    FieldRule(
        "reference_number",
        re.compile(
            r"\b(?:txn|transaction|ref|reference|utr|rrn)\.?\s*(?:id|no|number)?\.?\s*[:#\-]?\s*"
            r"(?P<id>(?=[A-Za-z0-9]*\d)[A-Za-z0-9]{8,})\b",
            re.IGNORECASE,
        ),
        lambda m: m.group("id").upper(),
    ),
]

# Dates


def _strptime_any(formats: tuple[str, ...]) -> Callable[[re.Match], datetime | None]:
    def mapper(match: re.Match) -> datetime | None:
        value = re.sub(r"\s+", " ", match.group(0))
        for fmt in formats:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
        return None

    return mapper


DATE_RULES = [
    FieldRule(
        "day_month_name",
        re.compile(r"\b\d{1,2}-[A-Za-z]{3}-\d{2,4}\b"),
        _strptime_any(("%d-%b-%y", "%d-%b-%Y")),
    ),
    FieldRule(
        "month_name_day_year",
        re.compile(r"\b[A-Za-z]{3}\s+\d{1,2},\s*\d{4}\b"),
        _strptime_any(("%b %d, %Y", "%b %d,%Y")),
    ),
    FieldRule(
        "day_month_name_year",
        re.compile(r"\b\d{1,2}\s+[A-Za-z]{3}\s+\d{4}\b"),
        _strptime_any(("%d %b %Y",)),
    ),
    FieldRule("iso", re.compile(r"\b\d{4}-\d{2}-\d{2}\b"), _strptime_any(("%Y-%m-%d",))),
    FieldRule(
        "day_month_year_slash",
        re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
        _strptime_any(("%d/%m/%Y", "%d/%m/%y")),
    ),
    FieldRule(
        "day_month_year_dash",
        re.compile(r"\b\d{1,2}-\d{1,2}-\d{2,4}\b"),
        _strptime_any(("%d-%m-%Y", "%d-%m-%y")),
    ),
]

_TIME_PATTERN = re.compile(r"\b(?P<h>[01]?\d|2[0-3]):(?P<m>[0-5]\d)(?::(?P<s>[0-5]\d))?\s*(?P<ampm>[AaPp][Mm])?\b")


def _with_time_of_day(day: datetime, text: str) -> datetime:
    match = _TIME_PATTERN.search(text)
    if not match:
        return day
    hour = int(match.group("h"))
    ampm = (match.group("ampm") or "").lower()
    if ampm == "pm" and hour < 12:
        hour += 12
    elif ampm == "am" and hour == 12:
        hour = 0
    return day.replace(hour=hour, minute=int(match.group("m")), second=int(match.group("s") or 0))


@dataclass
class ExtractedFields:
    """Everything the pattern cascades recovered from one text."""

    amount: float | None = None
    currency: str | None = None
    type: TransactionType = TransactionType.UNKNOWN
    merchant: str = UNKNOWN_MERCHANT
    transaction_id: str | None = None
    account_suffix: str | None = None
    balance: float | None = None
    date: datetime | None = None
    rules: dict[str, str] = field(default_factory=dict)  # field -> rule that matched

    @property
    def matched_fields(self) -> list[str]:
        return [name for name in SCORED_FIELDS if name in self.rules]

    @property
    def confidence(self) -> float:
        return len(self.matched_fields) / len(SCORED_FIELDS)

    @property
    def is_parsed(self) -> bool:
        return self.amount is not None and self.type != TransactionType.UNKNOWN

    @property
    def found_beyond_type(self) -> bool:
        return any(name != "type" for name in self.matched_fields)


class DeterministicExtractor:
    """Regex cascade extractor for amount, type, merchant, account, balance, reference and date."""

    def __init__(self, classifier: CategoryClassifier):
        self.classifier = classifier

    def extract_fields(self, text: str) -> ExtractedFields:
        fields = ExtractedFields()

        if hit := first_match(AMOUNT_RULES, text):
            (fields.amount, fields.currency), fields.rules["amount"] = hit

        txn_type, rule = classify_type(text)
        fields.type = txn_type
        if rule:
            fields.rules["type"] = rule

        if hit := first_match(MERCHANT_RULES, text):
            name, fields.rules["merchant"] = hit
            fields.merchant = clean_merchant_name(name)
        elif brand := match_brand(text):
            fields.merchant = clean_merchant_name(brand)
            fields.rules["merchant"] = "brand_list"

        if hit := first_match(ACCOUNT_RULES, text):
            fields.account_suffix, fields.rules["account"] = hit

        if hit := first_match(BALANCE_RULES, text):
            fields.balance, fields.rules["balance"] = hit

        if hit := first_match(TRANSACTION_ID_RULES, text):
            fields.transaction_id, fields.rules["transaction_id"] = hit

        if hit := first_match(DATE_RULES, text):
            day, fields.rules["date"] = hit
            fields.date = _with_time_of_day(day, text)

        logger.debug(f"Deterministic match: {fields.rules}")
        return fields

    def to_transaction(
        self,
        fields: ExtractedFields,
        raw_text: str,
        received_at: datetime | None = None,
        base_currency: str = "INR",
        rate: float = 1.0,
        error: str | None = None,
    ) -> Transaction:
        """Build a Transaction; `rate` converts the detected currency into base units."""
        amount = fields.amount
        original_currency = None
        original_amount = None
        if amount is not None and fields.currency and fields.currency != base_currency:
            original_currency = fields.currency
            original_amount = amount
            amount = round(amount * rate, 2)

        return Transaction(
            raw_text=raw_text,
            amount=amount,
            type=fields.type,
            merchant=fields.merchant,
            category=self.classifier.classify(
                fields.merchant if "merchant" in fields.rules else None, raw_text
            ),
            account_suffix=fields.account_suffix,
            balance=fields.balance,
            timestamp=fields.date or received_at or datetime.now(),
            is_parsed=fields.is_parsed,
            transaction_id=fields.transaction_id,
            extraction_method="deterministic",
            confidence=FALLBACK_CONFIDENCE_FOUND if fields.found_beyond_type else FALLBACK_CONFIDENCE_EMPTY,
            extraction_error=error,
            original_currency=original_currency,
            original_amount=original_amount,
        )

    def quick_parse(
        self,
        text: str,
        received_at: datetime | None = None,
        base_currency: str = "INR",
        rate_lookup: Callable[[str], float] | None = None,
    ) -> Transaction:
        """Synchronous deterministic parse with an optional offline rate lookup."""
        fields = self.extract_fields(text)
        rate = 1.0
        if rate_lookup and fields.currency and fields.currency != base_currency:
            rate = rate_lookup(fields.currency)
        return self.to_transaction(fields, text, received_at, base_currency, rate)
