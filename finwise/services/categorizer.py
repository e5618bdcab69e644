"""Merchant categorization.

Categories are user-editable, so the classifier is always built from the
caller's active category list: a keyword only produces a category that is
currently active. Matching is keyword containment first, then an optional
edit-distance fallback, then "Other"/"Uncategorized".
"""

import logging
import re
from typing import Protocol

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from finwise.models import DEFAULT_CATEGORIES, UNCATEGORIZED

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Other"


class CategoryProvider(Protocol):
    """Anything that can supply the current active category names."""

    def get_active_categories(self) -> list[str]: ...


# Known merchants and keywords with their categories
KEYWORD_CATEGORIES: dict[str, str] = {
    # Food & Dining
    "swiggy": "Food & Dining",
    "zomato": "Food & Dining",
    "eatsure": "Food & Dining",
    "dominos": "Food & Dining",
    "domino's": "Food & Dining",
    "pizza hut": "Food & Dining",
    "mcdonald": "Food & Dining",
    "burger king": "Food & Dining",
    "kfc": "Food & Dining",
    "subway": "Food & Dining",
    "starbucks": "Food & Dining",
    "chaayos": "Food & Dining",
    "cafe coffee day": "Food & Dining",
    "haldiram": "Food & Dining",
    "restaurant": "Food & Dining",
    "cafe": "Food & Dining",
    "dhaba": "Food & Dining",
    "bakery": "Food & Dining",
    "food": "Food & Dining",

    # Groceries
    "bigbasket": "Groceries",
    "blinkit": "Groceries",
    "zepto": "Groceries",
    "instamart": "Groceries",
    "dmart": "Groceries",
    "jiomart": "Groceries",
    "more retail": "Groceries",
    "reliance fresh": "Groceries",
    "spencer": "Groceries",
    "nature's basket": "Groceries",
    "grocery": "Groceries",
    "supermarket": "Groceries",
    "kirana": "Groceries",

    # Transportation
    "uber": "Transportation",
    "ola": "Transportation",
    "rapido": "Transportation",
    "metro": "Transportation",
    "fastag": "Transportation",
    "indian oil": "Transportation",
    "iocl": "Transportation",
    "bharat petroleum": "Transportation",
    "bpcl": "Transportation",
    "hpcl": "Transportation",
    "petrol": "Transportation",
    "fuel": "Transportation",
    "parking": "Transportation",

    # Shopping
    "amazon": "Shopping",
    "flipkart": "Shopping",
    "myntra": "Shopping",
    "ajio": "Shopping",
    "meesho": "Shopping",
    "nykaa": "Shopping",
    "tata cliq": "Shopping",
    "croma": "Shopping",
    "reliance digital": "Shopping",
    "decathlon": "Shopping",
    "ikea": "Shopping",
    "lifestyle": "Shopping",
    "shoppers stop": "Shopping",

    # Bills & Utilities
    "airtel": "Bills & Utilities",
    "jio": "Bills & Utilities",
    "vodafone": "Bills & Utilities",
    "vi postpaid": "Bills & Utilities",
    "bsnl": "Bills & Utilities",
    "tata power": "Bills & Utilities",
    "bescom": "Bills & Utilities",
    "electricity": "Bills & Utilities",
    "broadband": "Bills & Utilities",
    "recharge": "Bills & Utilities",
    "gas bill": "Bills & Utilities",
    "water bill": "Bills & Utilities",
    "insurance": "Bills & Utilities",

    # Entertainment
    "netflix": "Entertainment",
    "hotstar": "Entertainment",
    "prime video": "Entertainment",
    "spotify": "Entertainment",
    "youtube": "Entertainment",
    "bookmyshow": "Entertainment",
    "pvr": "Entertainment",
    "inox": "Entertainment",
    "sonyliv": "Entertainment",
    "zee5": "Entertainment",

    # Healthcare
    "apollo": "Healthcare",
    "pharmeasy": "Healthcare",
    "netmeds": "Healthcare",
    "1mg": "Healthcare",
    "medplus": "Healthcare",
    "practo": "Healthcare",
    "hospital": "Healthcare",
    "clinic": "Healthcare",
    "pharmacy": "Healthcare",
    "medical": "Healthcare",
    "diagnostic": "Healthcare",

    # Travel
    "irctc": "Travel",
    "makemytrip": "Travel",
    "goibibo": "Travel",
    "cleartrip": "Travel",
    "yatra": "Travel",
    "ixigo": "Travel",
    "redbus": "Travel",
    "oyo": "Travel",
    "indigo": "Travel",
    "air india": "Travel",
    "vistara": "Travel",
    "spicejet": "Travel",
    "akasa": "Travel",
    "hotel": "Travel",
    "airlines": "Travel",

    # Education
    "byju": "Education",
    "unacademy": "Education",
    "udemy": "Education",
    "coursera": "Education",
    "school": "Education",
    "college": "Education",
    "university": "Education",
    "tuition": "Education",

    # Income
    "salary": "Income",
    "payroll": "Income",
    "employer": "Income",
    "interest credit": "Income",
    "dividend": "Income",
    "cashback": "Income",
    "refund": "Income",

    # Transfer
    "neft": "Transfer",
    "imps": "Transfer",
    "rtgs": "Transfer",
    "self transfer": "Transfer",
    "atm": "Transfer",
    "cash withdrawal": "Transfer",
}

# Loose names a model may return instead of an active category name
CATEGORY_ALIASES: dict[str, str] = {
    "food": "Food & Dining",
    "dining": "Food & Dining",
    "restaurant": "Food & Dining",
    "grocer": "Groceries",
    "transport": "Transportation",
    "travel": "Travel",
    "shop": "Shopping",
    "bill": "Bills & Utilities",
    "utilit": "Bills & Utilities",
    "entertain": "Entertainment",
    "health": "Healthcare",
    "medical": "Healthcare",
    "educat": "Education",
    "salary": "Income",
    "income": "Income",
    "transfer": "Transfer",
}

_TOKEN_PATTERN = re.compile(r"[a-z0-9']+")


class CategoryClassifier:
    """Map merchant strings to one of the active categories."""

    def __init__(
        self,
        active_categories: list[str] | None = None,
        fuzzy_threshold: float = 0.7,
        use_fuzzy: bool = True,
    ):
        self.fuzzy_threshold = fuzzy_threshold
        self.use_fuzzy = use_fuzzy
        self.set_categories(active_categories or DEFAULT_CATEGORIES)

    @classmethod
    def from_provider(
        cls, provider: CategoryProvider, fuzzy_threshold: float = 0.7, use_fuzzy: bool = True
    ) -> "CategoryClassifier":
        return cls(provider.get_active_categories(), fuzzy_threshold, use_fuzzy)

    def set_categories(self, active_categories: list[str]) -> None:
        """Replace the active category list and rebuild the keyword table."""
        self.categories = list(active_categories)
        active = set(self.categories)
        # Longest keyword first so "prime video" beats "amazon"-style short matches
        self._keywords = sorted(
            (kw for kw, cat in KEYWORD_CATEGORIES.items() if cat in active),
            key=len,
            reverse=True,
        )
        logger.debug(f"Classifier ready with {len(self.categories)} categories, {len(self._keywords)} keywords")

    @property
    def fallback(self) -> str:
        if FALLBACK_CATEGORY in self.categories:
            return FALLBACK_CATEGORY
        if UNCATEGORIZED in self.categories:
            return UNCATEGORIZED
        return self.categories[0] if self.categories else UNCATEGORIZED

    def classify(self, merchant: str | None, text: str | None = None) -> str:
        """Return the category for a merchant, optionally using the full text as a hint."""
        for candidate in (merchant, text):
            if not candidate:
                continue
            category = self._keyword_match(candidate)
            if category:
                return category

        if self.use_fuzzy and merchant:
            category = self._fuzzy_match(merchant)
            if category:
                return category

        return self.fallback

    def normalize(self, category: str | None, merchant: str | None = None) -> str:
        """Map a free-form category name (e.g. from a model) onto the active list."""
        if category:
            cleaned = category.strip()
            if cleaned in self.categories:
                return cleaned

            lower = cleaned.lower()
            for name in self.categories:
                if name.lower() == lower:
                    return name

            for alias, name in CATEGORY_ALIASES.items():
                if alias in lower and name in self.categories:
                    return name

        return self.classify(merchant)

    def _keyword_match(self, value: str) -> str | None:
        lower = value.lower()
        tokens = set(_TOKEN_PATTERN.findall(lower))
        for keyword in self._keywords:
            # Short keywords ("ola", "jio", "atm") must match a whole token
            if len(keyword) <= 4:
                if keyword in tokens:
                    return KEYWORD_CATEGORIES[keyword]
            elif keyword in lower:
                return KEYWORD_CATEGORIES[keyword]
        return None

    def _fuzzy_match(self, merchant: str) -> str | None:
        """Edit-distance match of merchant tokens against the keyword list."""
        if not self._keywords:
            return None

        lower = merchant.lower().strip()
        candidates = [lower] + [t for t in _TOKEN_PATTERN.findall(lower) if len(t) >= 4]

        best: tuple[str, float] | None = None
        for candidate in candidates:
            match = process.extractOne(
                candidate,
                self._keywords,
                scorer=Levenshtein.normalized_similarity,
                score_cutoff=self.fuzzy_threshold,
            )
            if match and (best is None or match[1] > best[1]):
                best = (match[0], match[1])

        if best:
            logger.debug(f"Fuzzy category match: '{merchant}' ~ '{best[0]}' ({best[1]:.2f})")
            return KEYWORD_CATEGORIES[best[0]]
        return None
