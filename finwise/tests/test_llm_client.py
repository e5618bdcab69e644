"""Tests for the litellm wrapper."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from finwise.parsers.document_types import StructuredTransaction
from finwise.parsers.llm_client import LLMClient, ParsingError, clean_json_content
from finwise.parsers.vision import strip_thousands_separators


def completion(content: str | None):
    """Minimal stand-in for a litellm ModelResponse."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestCleanJsonContent:
    """Test fence and prose stripping."""

    def test_json_fence(self):
        assert clean_json_content('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert clean_json_content('```\n[1, 2]\n```') == "[1, 2]"

    def test_leading_prose(self):
        assert clean_json_content('Here is the JSON: {"a": 1}') == '{"a": 1}'

    def test_truncated_fence(self):
        assert clean_json_content('```json\n{"a": 1') == '{"a": 1'

    def test_bare_json_is_unchanged(self):
        assert clean_json_content('  {"a": 1}  ') == '{"a": 1}'


@pytest.mark.asyncio
class TestExtractJson:
    """Test structured extraction through the client."""

    async def test_validates_response(self, config):
        client = LLMClient(config)
        raw = '```json\n{"amount": "1,400.00", "type": "Debit", "account_last_digits": "XX2008"}\n```'

        with patch("finwise.parsers.llm_client.acompletion", new=AsyncMock(return_value=completion(raw))) as mock:
            structured, raw_response = await client.extract_json("prompt", StructuredTransaction)

        assert structured.amount == 1400.0
        assert structured.type == "debit"
        assert structured.account_last_digits == "2008"
        assert structured.currency is None
        assert raw_response == raw.strip()
        assert mock.await_args.kwargs["model"] == client.model_name
        assert mock.await_args.kwargs["temperature"] == 0.1

    async def test_invalid_json(self, config):
        client = LLMClient(config)
        with patch("finwise.parsers.llm_client.acompletion", new=AsyncMock(return_value=completion("not json"))):
            with pytest.raises(ParsingError, match="invalid JSON"):
                await client.extract_json("prompt", StructuredTransaction)

    async def test_schema_mismatch(self, config):
        client = LLMClient(config)
        with patch("finwise.parsers.llm_client.acompletion", new=AsyncMock(return_value=completion('{"amount": 5}'))):
            with pytest.raises(ParsingError, match="validation failed"):
                await client.extract_json("prompt", StructuredTransaction)

    async def test_empty_response(self, config):
        client = LLMClient(config)
        with patch("finwise.parsers.llm_client.acompletion", new=AsyncMock(return_value=completion("  "))):
            with pytest.raises(ParsingError, match="empty"):
                await client.extract_json("prompt", StructuredTransaction)

    async def test_provider_error_becomes_parsing_error(self, config):
        client = LLMClient(config)
        with patch("finwise.parsers.llm_client.acompletion", new=AsyncMock(side_effect=RuntimeError("connection refused"))):
            with pytest.raises(ParsingError, match="connection refused"):
                await client.complete_text("prompt")


@pytest.mark.asyncio
class TestRetries:
    """Test retry behavior."""

    async def test_retries_then_succeeds(self, config):
        client = LLMClient(config.model_copy(update={"llm_max_retries": 2}))
        mock = AsyncMock(side_effect=[RuntimeError("down"), completion("Rs 500 debited")])

        with patch("finwise.parsers.llm_client.acompletion", new=mock), patch(
            "finwise.parsers.llm_client.asyncio.sleep", new=AsyncMock()
        ) as sleep:
            text = await client.complete_text("prompt")

        assert text == "Rs 500 debited"
        assert mock.await_count == 2
        sleep.assert_awaited_once_with(1)


@pytest.mark.asyncio
class TestVisionCall:
    """Test the image request."""

    async def test_sends_image_and_repairs_numbers(self, config):
        client = LLMClient(config)
        raw = '{"transactions": [{"description": "RENT", "amount": 25,000.00}]}'

        with patch("finwise.parsers.llm_client.acompletion", new=AsyncMock(return_value=completion(raw))) as mock:
            data, _ = await client.extract_json_from_image("prompt", "aGVsbG8=", repair=strip_thousands_separators)

        assert data == {"transactions": [{"description": "RENT", "amount": 25000.00}]}
        content = mock.await_args.kwargs["messages"][0]["content"]
        assert content[1]["image_url"]["url"] == "data:image/png;base64,aGVsbG8="
        assert mock.await_args.kwargs["model"] == client.vision_model_name
