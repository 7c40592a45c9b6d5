"""OpenAI-compatible chat completions for incident summaries.

Only single, non-streaming completions are needed. The SDK's built-in retries
are switched off so that backoff and its logging happen in one place.
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from typing import Any

import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)

from lycaon.infra.errors import LLMError

logger = structlog.get_logger()

# APITimeoutError subclasses APIConnectionError; InternalServerError covers 5xx
_TRANSIENT = (APIConnectionError, RateLimitError, InternalServerError)


class ModelClient(ABC):
    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        *,
        temperature: float | None = None,
        json_output: bool = False,
    ) -> str:
        """Return the content of the first completion choice."""
        ...


def _message_content(response: Any) -> str:
    if not response.choices:
        raise LLMError("Empty choices from provider", code="LLM_EMPTY_RESPONSE")
    return response.choices[0].message.content or ""


class OpenAICompatModelClient(ModelClient):
    """ModelClient over AsyncOpenAI (OpenAI, Gemini, Ollama, vLLM endpoints).

    Transient failures (connection, timeout, 429, 5xx) are retried with
    exponential backoff and jitter; other API errors fail immediately.
    Everything surfaces as LLMError.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        *,
        timeout: float = 20.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
    ) -> None:
        self._client = AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        self._max_retries = max_retries
        self._base_delay = base_delay

    def _backoff(self, attempt: int) -> float:
        return self._base_delay * (2**attempt) + random.uniform(0, self._base_delay / 2)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        *,
        temperature: float | None = None,
        json_output: bool = False,
    ) -> str:
        request: dict[str, Any] = {"model": model, "messages": messages}
        if json_output:
            request["response_format"] = {"type": "json_object"}
        if temperature is not None:
            request["temperature"] = temperature

        attempts = self._max_retries + 1
        for attempt in range(attempts):
            started = time.monotonic()
            try:
                response = await self._client.chat.completions.create(**request)
            except _TRANSIENT as e:
                if attempt + 1 == attempts:
                    raise LLMError(
                        f"LLM call failed after {attempts} attempts: {e}",
                        code="LLM_UNAVAILABLE",
                    ) from e
                delay = self._backoff(attempt)
                logger.warning(
                    "llm_call_retrying",
                    model=model,
                    attempt=attempt + 1,
                    delay_s=round(delay, 2),
                    error=str(e),
                )
                await asyncio.sleep(delay)
                continue
            except APIStatusError as e:
                raise LLMError(
                    f"LLM API error: {e.status_code} {e.message}", code="LLM_API_ERROR"
                ) from e

            content = _message_content(response)
            logger.debug(
                "llm_call_completed",
                model=model,
                chars=len(content),
                elapsed_ms=round((time.monotonic() - started) * 1000),
            )
            return content

        raise LLMError("LLM retry loop exhausted")  # pragma: no cover
