"""Statement page extraction through an image-capable LLM."""

import asyncio
import base64
import logging
import re
import time
from datetime import datetime, time as time_of_day
from io import BytesIO
from typing import Any

import pdfplumber
from pydantic import ValidationError

from finwise.config import Settings
from finwise.models import Transaction, TransactionType, VisionPageResult
from finwise.parsers.deterministic import clean_merchant_name
from finwise.parsers.document_types import VisionCandidate
from finwise.parsers.llm_client import LLMClient, ParsingError
from finwise.parsers.prompts import build_vision_prompt
from finwise.services.categorizer import CategoryClassifier
from finwise.services.exchange_rates import ExchangeRateCache

logger = logging.getLogger(__name__)

# Bare numbers like "amount": 1,234.50 are invalid JSON; drop the separators first
_GROUPED_NUMBER_FIELD = re.compile(r'("(?:amount|balance)"\s*:\s*)(-?\d{1,3}(?:,\d{3})+(?:\.\d+)?)')


def strip_thousands_separators(content: str) -> str:
    return _GROUPED_NUMBER_FIELD.sub(lambda m: m.group(1) + m.group(2).replace(",", ""), content)


def candidate_rows(data: Any) -> list[Any]:
    """Accept a bare array, a single object, or the {"transactions": [...]} wrapper."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        rows = data.get("transactions")
        if isinstance(rows, list):
            return rows
        if "transactions" in data:
            return []
        return [data]
    return []


def render_pdf_pages(contents: bytes, resolution: int = 150) -> list[str]:
    """Render each PDF page to a base64-encoded PNG."""
    images: list[str] = []
    with pdfplumber.open(BytesIO(contents)) as pdf:
        for page in pdf.pages:
            buffer = BytesIO()
            page.to_image(resolution=resolution).original.save(buffer, format="PNG")
            images.append(base64.b64encode(buffer.getvalue()).decode("ascii"))
    logger.info(f"Rendered {len(images)} statement pages at {resolution} dpi")
    return images


class VisionStatementExtractor:
    """Reads transaction rows off rendered statement pages."""

    def __init__(
        self,
        config: Settings,
        llm: LLMClient | None,
        classifier: CategoryClassifier,
        rate_cache: ExchangeRateCache | None = None,
    ):
        self.config = config
        self.llm = llm
        self.classifier = classifier
        self.rate_cache = rate_cache
        self.base_currency = config.base_currency.upper()

    @property
    def enabled(self) -> bool:
        return self.config.vision_enabled and self.llm is not None

    async def parse_page(self, image_b64: str, page_number: int) -> VisionPageResult:
        """Parse one page image. Never raises for model or JSON failures."""
        started = time.monotonic()
        if not self.enabled:
            return VisionPageResult(page_number=page_number, error="Vision extraction is disabled")

        prompt = build_vision_prompt(page_number, self.classifier.categories, self.base_currency)
        try:
            data, _raw = await self.llm.extract_json_from_image(
                prompt, image_b64, repair=strip_thousands_separators
            )
        except ParsingError as e:
            logger.warning(f"Vision extraction failed for page {page_number}: {e}")
            return VisionPageResult(
                page_number=page_number,
                error=str(e),
                model_name=self.llm.vision_model_name,
                elapsed_seconds=time.monotonic() - started,
            )

        transactions: list[Transaction] = []
        skipped = 0
        for row in candidate_rows(data):
            try:
                candidate = VisionCandidate.model_validate(row)
            except ValidationError as e:
                skipped += 1
                logger.debug(f"Skipping invalid row on page {page_number}: {e.error_count()} errors")
                continue
            transactions.append(await self._to_transaction(candidate))

        logger.info(f"Page {page_number}: {len(transactions)} transactions, {skipped} skipped")
        return VisionPageResult(
            page_number=page_number,
            transactions=transactions,
            skipped=skipped,
            model_name=self.llm.vision_model_name,
            elapsed_seconds=time.monotonic() - started,
        )

    async def parse_statement(self, contents: bytes) -> list[VisionPageResult]:
        """Render a statement PDF and parse its pages one at a time."""
        pages = render_pdf_pages(contents, self.config.pdf_render_resolution)
        results = []
        for index, image in enumerate(pages, start=1):
            if index > 1:
                await asyncio.sleep(self.config.batch_rate_limit_ms / 1000)
            results.append(await self.parse_page(image, index))
        return results

    async def _to_transaction(self, candidate: VisionCandidate) -> Transaction:
        amount = candidate.amount
        currency = candidate.currency or self.base_currency
        original_currency = None
        original_amount = None
        if currency != self.base_currency and self.rate_cache is not None:
            original_currency = currency
            original_amount = amount
            amount = round(await self.rate_cache.convert(amount, currency), 2)

        date_text = candidate.date.isoformat() if candidate.date else ""
        merchant = clean_merchant_name(candidate.description[:80])
        return Transaction(
            raw_text=f"{date_text} {candidate.description} {currency} {candidate.amount:.2f} {candidate.type}".strip(),
            amount=amount,
            type=TransactionType(candidate.type),
            merchant=merchant,
            category=self.classifier.normalize(candidate.category, candidate.description),
            timestamp=datetime.combine(candidate.date, time_of_day()) if candidate.date else datetime.now(),
            is_parsed=True,
            extraction_method=f"vision:{self.llm.vision_model_name}",
            confidence=candidate.confidence,
            original_currency=original_currency,
            original_amount=original_amount,
        )
