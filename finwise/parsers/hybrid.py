"""Hybrid transaction extraction: LLM first, regex cascade as fallback.

The pipeline is a small state machine:

    DISABLED --------------------------------------> DETERMINISTIC
    ENABLED -> PRIMARY_ATTEMPT -> SUCCESS
                               -> FAILURE ---------> DETERMINISTIC

Every terminal state produces a ParsingResult. Model failures of any kind
(transport, timeout, bad JSON, schema mismatch) are recorded on the result and
never raised. Storage errors from the rate cache do propagate.
"""

import asyncio
import logging
import time
from datetime import datetime, time as time_of_day
from enum import Enum

from finwise.config import Settings
from finwise.models import UPI_ACCOUNT_MARKER, ParsingResult, Transaction, TransactionType
from finwise.parsers.deterministic import TYPE_RULES, DeterministicExtractor, ExtractedFields, clean_merchant_name
from finwise.parsers.document_types import StructuredTransaction
from finwise.parsers.llm_client import LLMClient, ParsingError
from finwise.parsers.preprocess import build_model_input, strip_markup
from finwise.parsers.prompts import build_extraction_prompt, build_structuring_prompt
from finwise.services.categorizer import CategoryClassifier
from finwise.services.exchange_rates import ExchangeRateCache

logger = logging.getLogger(__name__)

_HOLDER_TYPE_RULES = {rule.name for rule in TYPE_RULES}


class PipelineState(str, Enum):
    DISABLED = "disabled"
    PRIMARY_ATTEMPT = "primary_attempt"
    SUCCESS = "success"
    FAILURE = "failure"
    DETERMINISTIC = "deterministic"


class HybridExtractionPipeline:
    """Turns one notification text into a ParsingResult."""

    def __init__(
        self,
        config: Settings,
        llm: LLMClient | None,
        rate_cache: ExchangeRateCache,
        classifier: CategoryClassifier,
    ):
        self.config = config
        self.llm = llm
        self.rate_cache = rate_cache
        self.classifier = classifier
        self.deterministic = DeterministicExtractor(classifier)
        self.base_currency = config.base_currency.upper()

    @property
    def primary_enabled(self) -> bool:
        return self.config.llm_enabled and self.llm is not None

    async def extract(
        self,
        text: str,
        subject: str | None = None,
        snippet: str | None = None,
        received_at: datetime | None = None,
    ) -> ParsingResult:
        """Extract a transaction from raw notification text."""
        started = time.monotonic()
        state = PipelineState.PRIMARY_ATTEMPT if self.primary_enabled else PipelineState.DISABLED
        failure: str | None = None
        result: ParsingResult | None = None

        while True:
            logger.debug(f"Pipeline state: {state.value}")

            if state == PipelineState.DISABLED:
                state = PipelineState.DETERMINISTIC

            elif state == PipelineState.PRIMARY_ATTEMPT:
                try:
                    result = await self._primary(text, subject, snippet, received_at, started)
                    state = PipelineState.SUCCESS
                except ParsingError as e:
                    failure = str(e)
                    state = PipelineState.FAILURE

            elif state == PipelineState.SUCCESS:
                return result

            elif state == PipelineState.FAILURE:
                logger.warning(f"Primary extraction failed, using pattern fallback: {failure}")
                state = PipelineState.DETERMINISTIC

            elif state == PipelineState.DETERMINISTIC:
                return await self._deterministic(text, received_at, started, failure)

    def quick_parse(self, text: str, received_at: datetime | None = None) -> Transaction:
        """Synchronous pattern-only parse using cached or static rates."""
        return self.deterministic.quick_parse(
            strip_markup(text), received_at, self.base_currency, self.rate_cache.offline_rate
        )

    async def _call(self, coro, step: str):
        """Await one model call under the fixed per-call deadline."""
        timeout = self.config.llm_call_timeout
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ParsingError(f"{step} call exceeded {timeout}s deadline") from e

    async def _primary(
        self,
        text: str,
        subject: str | None,
        snippet: str | None,
        received_at: datetime | None,
        started: float,
    ) -> ParsingResult:
        content = build_model_input(text, subject, snippet)
        if not content.strip():
            raise ParsingError("No content left after preprocessing")

        extracted = await self._call(self.llm.complete_text(build_extraction_prompt(content)), "Extraction")
        extracted = extracted.strip()
        if not extracted:
            raise ParsingError("Extraction step returned no text")
        logger.debug(f"Extracted transaction text: {extracted!r}")

        prompt = build_structuring_prompt(
            extracted, self.classifier.categories, UPI_ACCOUNT_MARKER, self.base_currency
        )
        structured, raw_response = await self._call(
            self.llm.extract_json(prompt, StructuredTransaction), "Structuring"
        )

        transaction = await self._from_structured(structured, text, received_at)
        logger.info(
            f"Primary extraction: {transaction.type.value} {transaction.amount} "
            f"at {transaction.merchant} ({transaction.confidence:.2f})"
        )
        return ParsingResult.from_primary(
            transaction,
            model_name=self.llm.model_name,
            raw_response=raw_response,
            elapsed_seconds=time.monotonic() - started,
        )

    async def _from_structured(
        self,
        structured: StructuredTransaction,
        raw_text: str,
        received_at: datetime | None,
    ) -> Transaction:
        # The pattern cascade runs alongside the model to enforce account and type rules
        fields = self.deterministic.extract_fields(strip_markup(raw_text))

        account = structured.account_last_digits
        text_account = fields.account_suffix
        if text_account and (account is None or (account == UPI_ACCOUNT_MARKER and text_account != UPI_ACCOUNT_MARKER)):
            account = text_account

        txn_type = TransactionType(structured.type)
        if fields.rules.get("type") in _HOLDER_TYPE_RULES and fields.type != txn_type:
            logger.info(f"Overriding model type {txn_type.value} with {fields.type.value} from holder phrase")
            txn_type = fields.type

        merchant = clean_merchant_name(structured.merchant) if structured.merchant else fields.merchant

        currency = fields.currency or structured.currency or self.base_currency
        amount = structured.amount
        original_currency = None
        original_amount = None
        if currency != self.base_currency:
            original_currency = currency
            original_amount = amount
            amount = round(await self.rate_cache.convert(amount, currency), 2)

        return Transaction(
            raw_text=raw_text,
            amount=amount,
            type=txn_type,
            merchant=merchant,
            category=self.classifier.normalize(structured.category, merchant),
            account_suffix=account,
            balance=fields.balance,
            timestamp=self._timestamp(structured, fields, received_at),
            is_parsed=True,
            transaction_id=structured.transaction_id or fields.transaction_id,
            extraction_method=f"primary-model:{self.llm.model_name}",
            confidence=structured.confidence,
            original_currency=original_currency,
            original_amount=original_amount,
        )

    @staticmethod
    def _timestamp(
        structured: StructuredTransaction,
        fields: ExtractedFields,
        received_at: datetime | None,
    ) -> datetime:
        if structured.date is None:
            return fields.date or received_at or datetime.now()
        if fields.date and fields.date.date() == structured.date:
            return fields.date
        return datetime.combine(structured.date, time_of_day())

    async def _deterministic(
        self,
        text: str,
        received_at: datetime | None,
        started: float,
        failure: str | None,
    ) -> ParsingResult:
        fields = self.deterministic.extract_fields(strip_markup(text))

        rate = 1.0
        if fields.amount is not None and fields.currency and fields.currency != self.base_currency:
            rate = await self.rate_cache.rate(fields.currency)

        error = f"Primary model: {failure}" if failure else None
        transaction = self.deterministic.to_transaction(
            fields, text, received_at, self.base_currency, rate, error=error
        )
        logger.info(
            f"Pattern extraction: {transaction.type.value} {transaction.amount} at {transaction.merchant} "
            f"(matched {len(fields.matched_fields)}/6)"
        )
        return ParsingResult.from_deterministic(
            transaction,
            fields.matched_fields,
            elapsed_seconds=time.monotonic() - started,
            error=failure,
        )
