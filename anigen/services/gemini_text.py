"""Structured text completions through an OpenAI-compatible chat endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Sequence

from openai import APIError, AsyncOpenAI

from ..errors import GenerationServiceError, InvalidPlan
from .base import StructuredCompletion, validate_records

logger = logging.getLogger(__name__)


class GeminiTextClient:
    """Generates animation plans via Gemini's OpenAI-compatible API with mock fallback.

    When ``use_mock`` is True a deterministic plan is returned so the pipeline
    remains runnable without network access.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: str = "gemini-2.5-flash",
        use_mock: bool = True,
        timeout: int = 120,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._use_mock = use_mock
        self._timeout = timeout
        self._client: AsyncOpenAI | None = None

    async def complete_structured(
        self,
        prompt: str,
        schema: dict,
        *,
        expected_count: int,
        required_fields: Sequence[str],
    ) -> StructuredCompletion:
        """Return parsed records that satisfy ``schema`` and the expected length."""
        if self._use_mock:
            completion = await self._mock_completion(prompt, expected_count, required_fields)
        else:
            completion = await self._remote_completion(prompt, schema)
        validate_records(
            completion.data,
            expected_count=expected_count,
            required_fields=required_fields,
            usage=completion.usage,
        )
        return completion

    async def _remote_completion(self, prompt: str, schema: dict) -> StructuredCompletion:
        if not self._api_key:
            raise GenerationServiceError("Gemini API key is missing; cannot call the text model.")

        client = self._resolve_client()
        try:
            response = await client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "animation_plan", "schema": schema},
                },
                timeout=self._timeout,
            )
        except APIError as err:
            raise GenerationServiceError(f"Text model call failed: {err}") from err

        usage = getattr(response, "usage", None)
        prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)

        text = self._extract_text(response)
        if not text:
            raise InvalidPlan("The text model returned an empty response.", usage=(prompt_tokens, completion_tokens))

        cleaned = self._clean_json_text(text)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise InvalidPlan(
                f"Failed to decode the animation plan as JSON: {cleaned[:200]}",
                usage=(prompt_tokens, completion_tokens),
            ) from exc

        return StructuredCompletion(
            data=data,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            raw_text=text,
        )

    def _resolve_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._api_url)
        return self._client

    async def _mock_completion(
        self, prompt: str, expected_count: int, required_fields: Sequence[str]
    ) -> StructuredCompletion:
        """Deterministic local fallback used for testing."""
        await asyncio.sleep(0)
        last = max(1, expected_count - 1)
        records: List[dict] = []
        for index in range(expected_count):
            phase = index / last
            record = {name: f"{name.replace('_', ' ')} at {phase:.0%} of the motion" for name in required_fields}
            record["notes"] = f"Frame {index + 1} of {expected_count}"
            records.append(record)
        # Roughly four characters per token.
        prompt_tokens = len(prompt) // 4
        completion_tokens = len(json.dumps(records)) // 4
        return StructuredCompletion(data=records, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

    @staticmethod
    def _clean_json_text(text: str) -> str:
        """Strip markdown code fences and isolate the JSON array."""
        cleaned = text.strip()
        if cleaned.startswith("```") and cleaned.endswith("```"):
            lines = cleaned.splitlines()
            if len(lines) >= 3:
                cleaned = "\n".join(lines[1:-1]).strip()
        start = cleaned.find("[")
        end = cleaned.rfind("]")
        if start != -1 and end > start:
            return cleaned[start : end + 1]
        return cleaned

    @staticmethod
    def _extract_text(response: Any) -> str | None:
        """Extract assistant text content from OpenAI-compatible responses."""
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content if isinstance(content, str) else None
