# core/llm_interface.py
"""
Client for the remote text-generation service.

Talks to an OpenAI-compatible ``/chat/completions`` endpoint through a single
shared ``httpx.AsyncClient``. Failures are classified into the error taxonomy
in :mod:`core.errors`; retryable ones are retried here with exponential
backoff and jitter before being surfaced to the caller.
"""

from __future__ import annotations

import asyncio
import json
import random
import re
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from config import settings
from core.errors import (
    GenerationError,
    GenerationErrorKind,
    NonRetryableGenerationError,
    error_for_kind,
    error_for_status,
)
from core.usage import TokenUsage, calculate_cost

logger = structlog.get_logger(__name__)


@dataclass
class GenerationResult:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    model: str = ""


def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base or "api.anthropic.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


class LLMService:
    """Async generation client with bounded concurrency and classified retries."""

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        timeout: float = settings.HTTPX_TIMEOUT,
        max_concurrency: int = settings.MAX_CONCURRENT_LLM_CALLS,
        retry_attempts: int = settings.LLM_RETRY_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_base = (api_base or settings.GENERATION_API_BASE).rstrip("/")
        self.api_key = api_key or settings.GENERATION_API_KEY
        self.retry_attempts = max(1, retry_attempts)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.request_count = 0
        logger.info(
            "LLMService initialized",
            api_base=self.api_base,
            concurrency_limit=max_concurrency,
        )

    def _backoff_seconds(self, attempt: int) -> float:
        delay = min(
            settings.LLM_RETRY_DELAY_SECONDS * (2**attempt),
            settings.LLM_RETRY_MAX_DELAY_SECONDS,
        )
        return delay + random.uniform(0, delay / 2)

    async def _backoff_delay(self, attempt: int) -> None:
        """Sleep for an exponentially increasing delay with jitter."""
        await asyncio.sleep(self._backoff_seconds(attempt))

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _post_non_streaming(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> tuple[str, dict[str, Any] | None]:
        """Send a chat completion request and return text plus raw usage."""
        try:
            response = await self._client.post(
                f"{self.api_base}/chat/completions",
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise error_for_kind(
                GenerationErrorKind.SERVER_UNAVAILABLE, f"Request timed out: {exc}"
            ) from exc
        except httpx.RequestError as exc:
            raise error_for_kind(
                GenerationErrorKind.SERVER_UNAVAILABLE, f"Transport error: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise error_for_status(response.status_code, response.text[:200])

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise error_for_kind(
                GenerationErrorKind.UNKNOWN, f"Undecodable response body: {exc}"
            ) from exc

        raw_text = ""
        if data.get("choices"):
            message = data["choices"][0].get("message")
            if message and message.get("content"):
                raw_text = message["content"]
        else:
            logger.error(
                "Invalid response structure: missing choices",
                model=payload.get("model"),
            )
            raise error_for_kind(
                GenerationErrorKind.UNKNOWN, "Response contained no choices"
            )
        return raw_text, data.get("usage")

    async def _call_model_with_retries(
        self, payload: dict[str, Any], headers: dict[str, str]
    ) -> tuple[str, dict[str, Any] | None]:
        last_exc: GenerationError | None = None
        for attempt in range(self.retry_attempts):
            try:
                self.request_count += 1
                return await self._post_non_streaming(payload, headers)
            except NonRetryableGenerationError as exc:
                logger.error(
                    "Generation failed with non-retryable error",
                    model=payload["model"],
                    kind=exc.kind.value,
                    status=exc.status_code,
                )
                raise
            except GenerationError as exc:
                last_exc = exc
                logger.warning(
                    "Generation attempt failed",
                    model=payload["model"],
                    attempt=attempt + 1,
                    max_attempts=self.retry_attempts,
                    kind=exc.kind.value,
                    error=str(exc),
                )
            if attempt < self.retry_attempts - 1:
                await self._backoff_delay(attempt)

        assert last_exc is not None
        logger.error(
            "All generation attempts failed",
            model=payload["model"],
            attempts=self.retry_attempts,
        )
        raise last_exc

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> GenerationResult:
        """Generate text for ``prompt``.

        Raises:
            NonRetryableGenerationError: empty prompt, bad request or auth failure.
            RetryableGenerationError: rate limiting or server failures that
                persisted through every in-service retry.
        """
        if not prompt or not isinstance(prompt, str) or not prompt.strip():
            raise NonRetryableGenerationError(
                "Prompt must be a non-empty string",
                kind=GenerationErrorKind.MALFORMED_REQUEST,
            )

        model_name = model or settings.DEFAULT_MODEL
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload: dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "temperature": (
                temperature if temperature is not None else settings.DEFAULT_TEMPERATURE
            ),
            _completion_token_param(self.api_base): (
                max_tokens if max_tokens is not None else settings.DEFAULT_MAX_TOKENS
            ),
            "stream": False,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with self._semaphore:
            text, raw_usage = await self._call_model_with_retries(payload, headers)

        usage = TokenUsage.from_api(raw_usage)
        logger.info(
            "Generation usage",
            model=model_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return GenerationResult(
            content=self.clean_model_response(text),
            usage=usage,
            cost=calculate_cost(usage.input_tokens, usage.output_tokens),
            model=model_name,
        )

    def clean_model_response(self, text: str) -> str:
        """Strip reasoning tags and code fences, and normalize newlines."""
        if not isinstance(text, str):
            return ""
        cleaned = text
        for tag_name in ("think", "thinking", "reasoning"):
            cleaned = re.sub(
                rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
                "",
                cleaned,
                flags=re.DOTALL | re.IGNORECASE,
            )
        cleaned = re.sub(
            r"```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```", r"\1", cleaned, flags=re.DOTALL
        )
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
        return cleaned.strip()
