"""Reusable LLM client for notification and statement parsing."""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Type, TypeVar

from litellm import acompletion
from pydantic import BaseModel, ValidationError

from finwise.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ParsingError(Exception):
    """Raised when LLM-based parsing fails."""

    pass


def clean_json_content(content: str) -> str:
    """Strip markdown fences and any prose before the first JSON bracket."""
    content = content.strip()

    # Handle both "```json" and "```" styles, and text before the block
    if "```" in content:
        parts = content.split("```")
        if len(parts) >= 3:
            json_content = parts[1]
            if json_content.lstrip().startswith("json"):
                json_content = json_content.lstrip()[4:]
            content = json_content.strip()
        elif len(parts) == 2:
            # Only one ``` marker (truncated response)
            content = parts[1].strip()

    json_start = min(
        content.find("{") if "{" in content else len(content),
        content.find("[") if "[" in content else len(content),
    )
    if 0 < json_start < len(content):
        content = content[json_start:]
    return content


class LLMClient:
    """Thin async wrapper around litellm with retries.

    Every failure mode (transport, timeout, bad JSON, schema mismatch) surfaces
    as ``ParsingError`` so callers can fall back without inspecting provider
    exception types.
    """

    def __init__(self, config: Settings):
        self.config = config

    @property
    def model_name(self) -> str:
        return self.config.llm_model_name

    @property
    def vision_model_name(self) -> str:
        return self.config.vision_model_name

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        model: str,
        timeout: float,
        max_tokens: int,
    ) -> str:
        response = await acompletion(
            model=model,
            messages=messages,
            api_base=self.config.llm_api_base,
            api_key=self.config.llm_api_key,
            temperature=0.1,  # Low temperature for consistency
            max_tokens=max_tokens,
            timeout=timeout,
        )
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise ParsingError("LLM returned an empty response")
        return content.strip()

    async def _with_retries(self, call, description: str) -> Any:
        max_retries = max(1, self.config.llm_max_retries)
        for attempt in range(max_retries):
            try:
                return await call()
            except ParsingError as e:
                logger.warning(f"{description} failed (attempt {attempt + 1}/{max_retries}): {e}")
                if attempt == max_retries - 1:
                    raise
            except TimeoutError:
                logger.warning(f"{description} timed out (attempt {attempt + 1}/{max_retries})")
                if attempt == max_retries - 1:
                    raise ParsingError(f"LLM call timed out after {max_retries} attempts")
            except Exception as e:
                logger.error(f"{description} failed (attempt {attempt + 1}/{max_retries}): {e}")
                if attempt == max_retries - 1:
                    raise ParsingError(f"LLM call failed: {e}") from e

            wait_time = 2**attempt
            logger.info(f"Retrying in {wait_time}s...")
            await asyncio.sleep(wait_time)

        # Should never reach here
        raise ParsingError(f"Unexpected error in {description}")

    async def complete_text(self, prompt: str, timeout: float | None = None, max_tokens: int = 512) -> str:
        """Plain-text completion (used for the extraction step)."""

        async def call() -> str:
            return await self._complete(
                [{"role": "user", "content": prompt}],
                self.model_name,
                timeout or self.config.llm_call_timeout,
                max_tokens,
            )

        return await self._with_retries(call, "LLM text completion")

    async def extract_json(
        self,
        prompt: str,
        response_model: Type[T],
        timeout: float | None = None,
        max_tokens: int = 1024,
    ) -> tuple[T, str]:
        """
        Call the LLM and validate its JSON answer against a Pydantic model.

        Returns:
            (validated model, raw response text)

        Raises:
            ParsingError: If the call fails or the response doesn't match the schema
        """

        async def call() -> tuple[T, str]:
            raw = await self._complete(
                [{"role": "user", "content": prompt}],
                self.model_name,
                timeout or self.config.llm_call_timeout,
                max_tokens,
            )
            data = _load_json(raw)
            try:
                return response_model.model_validate(data), raw
            except ValidationError as e:
                raise ParsingError(f"LLM response validation failed: {e}") from e

        return await self._with_retries(call, "LLM JSON extraction")

    async def extract_json_from_image(
        self,
        prompt: str,
        image_b64: str,
        timeout: float | None = None,
        mime_type: str = "image/png",
        repair: Callable[[str], str] | None = None,
    ) -> tuple[Any, str]:
        """
        Send one image plus instructions to the vision model.

        Returns the decoded JSON (object or array, shape checked by the caller)
        and the raw response text. `repair` is applied to the text before decoding.
        """
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}},
                ],
            }
        ]

        async def call() -> tuple[Any, str]:
            raw = await self._complete(
                messages,
                self.vision_model_name,
                timeout or self.config.vision_call_timeout,
                self.config.vision_max_tokens,
            )
            return _load_json(raw, repair), raw

        return await self._with_retries(call, "LLM vision extraction")


def _load_json(raw: str, repair: Callable[[str], str] | None = None) -> Any:
    content = clean_json_content(raw)
    if repair:
        content = repair(content)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON from LLM: {e}")
        logger.error(f"Content preview: {content[:200]}...")
        if content and not content.rstrip().endswith(("}", "]")):
            logger.error("Response appears truncated")
        raise ParsingError(f"LLM returned invalid JSON: {e}") from e
