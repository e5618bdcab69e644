"""Currency conversion with a 24-hour rate cache.

Rates are stored as "1 unit of base currency = X foreign units", which is the
shape the public rate APIs return. Converting a foreign amount therefore
inverts the cached figure. When the cache is stale and the live refresh fails,
a built-in static table is used; unknown currencies convert at 1.0.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Protocol

import httpx

from finwise.config import Settings
from finwise.db.sqlite import Database
from finwise.models import ExchangeRateCacheEntry

logger = logging.getLogger(__name__)

# Approximate value of 1 unit of each currency in INR
STATIC_RATES_INR: dict[str, float] = {
    "INR": 1.0,
    "USD": 83.12,
    "EUR": 88.45,
    "GBP": 102.34,
    "JPY": 0.55,
    "CNY": 11.38,
    "AUD": 53.67,
    "CAD": 60.89,
    "CHF": 94.23,
    "SGD": 61.45,
    "HKD": 10.64,
    "AED": 22.62,
    "SAR": 22.16,
    "QAR": 22.84,
    "KWD": 271.23,
    "OMR": 216.05,
    "BHD": 220.45,
    "MYR": 18.67,
    "THB": 2.39,
    "IDR": 0.0053,
    "PHP": 1.48,
    "KRW": 0.062,
    "VND": 0.0034,
}


class RateSource(Protocol):
    """Live exchange rate provider."""

    async def fetch(self, base_currency: str) -> dict[str, float]:
        """Return {code: units of code per 1 base unit}."""
        ...


class RateSourceError(Exception):
    """Raised when the live rate table cannot be fetched or understood."""

    pass


class HttpExchangeRateSource:
    """Fetches a full rate table from an exchangerate-api style endpoint."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)

    async def fetch(self, base_currency: str) -> dict[str, float]:
        url = f"{self.base_url}/{base_currency}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            raise RateSourceError(f"Rate request timed out: {url}") from e
        except httpx.HTTPStatusError as e:
            raise RateSourceError(f"Rate API error {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise RateSourceError(f"Rate request failed: {e}") from e
        except ValueError as e:
            raise RateSourceError(f"Rate API returned invalid JSON: {e}") from e

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise RateSourceError("Rate API response has no 'rates' table")

        parsed: dict[str, float] = {}
        for code, value in rates.items():
            try:
                rate = float(value)
            except (TypeError, ValueError):
                continue
            if rate > 0:
                parsed[str(code).upper()] = rate
        return parsed


class ExchangeRateCache:
    """Currency -> base-currency factors backed by the exchange_rates table."""

    def __init__(self, db: Database, source: RateSource, config: Settings):
        self.db = db
        self.source = source
        self.base_currency = config.base_currency.upper()
        self.ttl = timedelta(hours=config.rate_cache_ttl_hours)
        self.refresh_cooldown = config.rate_refresh_cooldown_seconds
        self._last_failure: float | None = None

    async def rate(self, currency: str) -> float:
        """Value of 1 unit of `currency` in base-currency units."""
        code = currency.strip().upper()
        if code == self.base_currency:
            return 1.0

        rates = self._fresh_rates()
        if rates is None:
            await self.refresh()
            rates = self._fresh_rates()

        if rates and rates.get(code, 0) > 0:
            return 1.0 / rates[code]

        static = self.static_rate(code)
        if static is not None:
            logger.info(f"Using static rate for {code}: {static}")
            return static

        logger.warning(f"No exchange rate for {code}, treating as {self.base_currency}")
        return 1.0

    async def convert(self, amount: float, currency: str) -> float:
        return amount * await self.rate(currency)

    def offline_rate(self, currency: str) -> float:
        """Rate from the cache (even if stale) or the static table, with no network call."""
        code = currency.strip().upper()
        if code == self.base_currency:
            return 1.0
        for entry in self.db.get_exchange_rates():
            if entry.currency == code and entry.rate > 0:
                return 1.0 / entry.rate
        static = self.static_rate(code)
        return static if static is not None else 1.0

    def static_rate(self, currency: str) -> float | None:
        """Static table value of 1 unit of `currency` in base units, re-based from INR."""
        code = currency.upper()
        if code not in STATIC_RATES_INR or self.base_currency not in STATIC_RATES_INR:
            return None
        return STATIC_RATES_INR[code] / STATIC_RATES_INR[self.base_currency]

    async def refresh(self, force: bool = False) -> bool:
        """Fetch and store a fresh rate table. Returns True when the cache was replaced."""
        if not force and not self.needs_refresh():
            return False
        if not force and self._in_cooldown():
            logger.debug("Skipping rate refresh: last attempt failed recently")
            return False

        try:
            rates = await self.source.fetch(self.base_currency)
        except RateSourceError as e:
            self._last_failure = time.monotonic()
            logger.warning(f"Exchange rate refresh failed: {e}")
            return False

        if not rates:
            self._last_failure = time.monotonic()
            logger.warning("Exchange rate refresh returned an empty table")
            return False

        self.db.replace_exchange_rates(rates, datetime.now())
        self._last_failure = None
        logger.info(f"Exchange rates refreshed: {len(rates)} currencies")
        return True

    def needs_refresh(self) -> bool:
        last = self.last_updated()
        return last is None or datetime.now() - last >= self.ttl

    def last_updated(self) -> datetime | None:
        entries = self.db.get_exchange_rates()
        if not entries:
            return None
        return min(entry.last_updated for entry in entries)

    def all_rates(self) -> list[ExchangeRateCacheEntry]:
        return self.db.get_exchange_rates()

    def clear(self) -> None:
        self.db.clear_exchange_rates()
        self._last_failure = None

    def _fresh_rates(self) -> dict[str, float] | None:
        entries = self.db.get_exchange_rates()
        if not entries:
            return None
        oldest = min(entry.last_updated for entry in entries)
        if datetime.now() - oldest >= self.ttl:
            return None
        return {entry.currency: entry.rate for entry in entries}

    def _in_cooldown(self) -> bool:
        return self._last_failure is not None and time.monotonic() - self._last_failure < self.refresh_cooldown
