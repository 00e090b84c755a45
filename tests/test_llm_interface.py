# tests/test_llm_interface.py
import json

import httpx
import pytest
from config import settings
from core.errors import (
    GenerationErrorKind,
    NonRetryableGenerationError,
    RetryableGenerationError,
)
from core.llm_interface import LLMService


def _ok_response(text: str = "Once upon a time.") -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "choices": [{"message": {"content": text}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
        },
    )


def _service(handler, monkeypatch, attempts: int = 3) -> LLMService:
    service = LLMService(
        api_base="http://llm.test/v1",
        api_key="k",
        retry_attempts=attempts,
        transport=httpx.MockTransport(handler),
    )

    async def no_sleep(attempt: int) -> None:
        return None

    monkeypatch.setattr(service, "_backoff_delay", no_sleep)
    return service


@pytest.mark.asyncio
async def test_successful_generation_parses_usage_and_cost(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return _ok_response("<think>plan</think>```text\nOnce upon a time.\n```")

    service = _service(handler, monkeypatch)
    result = await service.generate("Tell a story", system_prompt="be brief", max_tokens=50)
    await service.aclose()

    assert result.content == "Once upon a time."
    assert result.usage.input_tokens == 10
    assert result.usage.output_tokens == 20
    assert result.cost == pytest.approx(
        10 * settings.INPUT_TOKEN_COST + 20 * settings.OUTPUT_TOKEN_COST
    )
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer k"
    assert seen["body"]["max_tokens"] == 50
    assert seen["body"]["messages"][0] == {"role": "system", "content": "be brief"}


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried(monkeypatch):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, text="bad key")

    service = _service(handler, monkeypatch)
    with pytest.raises(NonRetryableGenerationError) as info:
        await service.generate("hello")
    await service.aclose()
    assert info.value.kind is GenerationErrorKind.AUTH
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_rate_limit_is_retried_until_success(monkeypatch):
    responses = iter([httpx.Response(429), httpx.Response(503), _ok_response()])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    service = _service(handler, monkeypatch)
    result = await service.generate("hello")
    await service.aclose()
    assert result.content == "Once upon a time."
    assert service.request_count == 3


@pytest.mark.asyncio
async def test_persistent_server_error_surfaces_as_retryable(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    service = _service(handler, monkeypatch, attempts=2)
    with pytest.raises(RetryableGenerationError) as info:
        await service.generate("hello")
    await service.aclose()
    assert info.value.kind is GenerationErrorKind.SERVER_UNAVAILABLE
    assert service.request_count == 2


@pytest.mark.asyncio
async def test_transport_error_is_classified(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    service = _service(handler, monkeypatch, attempts=1)
    with pytest.raises(RetryableGenerationError) as info:
        await service.generate("hello")
    await service.aclose()
    assert info.value.kind is GenerationErrorKind.SERVER_UNAVAILABLE


@pytest.mark.asyncio
async def test_empty_prompt_is_rejected(monkeypatch):
    service = _service(lambda request: _ok_response(), monkeypatch)
    with pytest.raises(NonRetryableGenerationError):
        await service.generate("   ")
    await service.aclose()
    assert service.request_count == 0


def test_backoff_is_capped():
    service = LLMService(api_base="http://llm.test/v1", api_key="k")
    delay = service._backoff_seconds(20)
    cap = settings.LLM_RETRY_MAX_DELAY_SECONDS
    assert cap <= delay <= cap * 1.5
