"""Tests for statement extraction from page images."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from finwise.models import TransactionType
from finwise.parsers.llm_client import ParsingError
from finwise.parsers.vision import VisionStatementExtractor, candidate_rows, strip_thousands_separators
from finwise.services.exchange_rates import ExchangeRateCache

PAGE_DATA = {
    "transactions": [
        {
            "date": "2025-10-01",
            "description": "NETFLIX SUBSCRIPTION",
            "amount": 649,
            "type": "DR",
            "category": "Entertainment",
        },
        {"description": "", "amount": 10},
        {"date": "02/10/2025", "description": "Salary ACME", "amount": "50,000.00", "type": "cr"},
    ]
}


class FixedRateSource:
    def __init__(self, rates: dict[str, float]):
        self.rates = rates

    async def fetch(self, base_currency: str) -> dict[str, float]:
        return dict(self.rates)


def mock_llm(data=None) -> MagicMock:
    llm = MagicMock()
    llm.vision_model_name = "ollama/vision-test"
    llm.extract_json_from_image = AsyncMock(return_value=(data, "raw"))
    return llm


@pytest.fixture
def vision_config(config):
    return config.model_copy(update={"vision_enabled": True})


class TestResponseShapes:
    """Test tolerance of different JSON shapes."""

    def test_candidate_rows(self):
        assert candidate_rows([{"a": 1}]) == [{"a": 1}]
        assert candidate_rows({"transactions": [{"a": 1}]}) == [{"a": 1}]
        assert candidate_rows({"description": "x", "amount": 1}) == [{"description": "x", "amount": 1}]
        assert candidate_rows({"transactions": None}) == []
        assert candidate_rows("nothing") == []

    def test_strip_thousands_separators(self):
        content = '{"amount": 1,234.50, "balance": 12,000, "description": "1,234 ITEMS"}'
        assert strip_thousands_separators(content) == '{"amount": 1234.50, "balance": 12000, "description": "1,234 ITEMS"}'


@pytest.mark.asyncio
class TestParsePage:
    """Test single-page extraction."""

    async def test_valid_rows_become_transactions(self, vision_config, classifier):
        extractor = VisionStatementExtractor(vision_config, mock_llm(PAGE_DATA), classifier)

        result = await extractor.parse_page("aW1hZ2U=", 1)

        assert result.error is None
        assert result.skipped == 1
        assert len(result.transactions) == 2

        netflix, salary = result.transactions
        assert netflix.type == TransactionType.DEBIT
        assert netflix.amount == 649.0
        assert netflix.merchant == "Netflix Subscription"
        assert netflix.category == "Entertainment"
        assert netflix.timestamp == datetime(2025, 10, 1)
        assert netflix.raw_text == "2025-10-01 NETFLIX SUBSCRIPTION INR 649.00 debit"
        assert netflix.extraction_method == "vision:ollama/vision-test"

        assert salary.type == TransactionType.CREDIT
        assert salary.amount == 50000.0
        assert salary.category == "Income"
        assert salary.timestamp == datetime(2025, 10, 2)

    async def test_foreign_rows_are_converted(self, vision_config, classifier, db):
        rate_cache = ExchangeRateCache(db, FixedRateSource({"USD": 0.0125}), vision_config)
        data = [{"date": "2025-10-05", "description": "AWS", "amount": 10, "currency": "USD"}]
        extractor = VisionStatementExtractor(vision_config, mock_llm(data), classifier, rate_cache)

        txn = (await extractor.parse_page("aW1hZ2U=", 2)).transactions[0]

        assert txn.amount == 800.0
        assert txn.original_currency == "USD"
        assert txn.original_amount == 10.0

    async def test_rows_without_currency_use_base(self, vision_config, classifier, db):
        usd_config = vision_config.model_copy(update={"base_currency": "USD"})
        rate_cache = ExchangeRateCache(db, FixedRateSource({"INR": 83.0}), usd_config)
        data = [{"date": "2025-10-05", "description": "AWS", "amount": 10, "currency": None}]
        extractor = VisionStatementExtractor(usd_config, mock_llm(data), classifier, rate_cache)

        txn = (await extractor.parse_page("aW1hZ2U=", 1)).transactions[0]

        assert txn.amount == 10.0
        assert txn.original_currency is None
        assert txn.raw_text == "2025-10-05 AWS USD 10.00 debit"

    async def test_model_failure_is_reported_on_page(self, vision_config, classifier):
        llm = mock_llm()
        llm.extract_json_from_image.side_effect = ParsingError("LLM returned invalid JSON")
        extractor = VisionStatementExtractor(vision_config, llm, classifier)

        result = await extractor.parse_page("aW1hZ2U=", 3)

        assert result.transactions == []
        assert result.error == "LLM returned invalid JSON"
        assert result.page_number == 3

    async def test_disabled(self, config, classifier):
        extractor = VisionStatementExtractor(config, mock_llm(PAGE_DATA), classifier)

        result = await extractor.parse_page("aW1hZ2U=", 1)

        assert extractor.enabled is False
        assert result.error == "Vision extraction is disabled"


@pytest.mark.asyncio
class TestParseStatement:
    """Test multi-page statements."""

    async def test_pages_are_parsed_in_order(self, vision_config, classifier):
        llm = mock_llm(PAGE_DATA)
        extractor = VisionStatementExtractor(vision_config, llm, classifier)

        with patch("finwise.parsers.vision.render_pdf_pages", return_value=["cGFnZTE=", "cGFnZTI="]):
            results = await extractor.parse_statement(b"%PDF-1.4")

        assert [r.page_number for r in results] == [1, 2]
        assert llm.extract_json_from_image.await_count == 2
        assert llm.extract_json_from_image.await_args_list[1].args[1] == "cGFnZTI="
