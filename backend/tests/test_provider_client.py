import json

import httpx
import pytest

from physio.config import Settings
from physio.errors import ApiError
from physio.services.openai_client import ChatCompletionProvider


def completion(content):
    return {
        "id": "gen-1",
        "object": "chat.completion",
        "created": 1710000000,
        "model": "openai/gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": content},
            }
        ],
    }


def make_provider(handler):
    settings = Settings(
        ai_api_key="test-key",
        ai_api_base_url="https://provider.test/api/v1",
        ai_referer="https://physio.test",
    )
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatCompletionProvider.from_settings(settings, http_client=http_client)


@pytest.mark.asyncio
async def test_invoke_sends_prompt_and_correlation_id():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion("  Do squats.  "))

    provider = make_provider(handler)
    try:
        text = await provider.invoke("PROMPT", "openai/gpt-4o-mini", 0.7, "corr-123")
    finally:
        await provider.aclose()

    assert text == "Do squats."
    assert seen["url"] == "https://provider.test/api/v1/chat/completions"
    assert seen["headers"]["X-Correlation-Id"] == "corr-123"
    assert seen["headers"]["HTTP-Referer"] == "https://physio.test"
    assert seen["headers"]["Authorization"] == "Bearer test-key"
    assert seen["body"]["model"] == "openai/gpt-4o-mini"
    assert seen["body"]["temperature"] == 0.7
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "You are assisting a physiotherapist."},
        {"role": "user", "content": "PROMPT"},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, expected",
    [
        (429, (429, "ai_rate_limited")),
        (503, (502, "model_provider_unavailable")),
        (500, (502, "model_provider_unavailable")),
        (400, (500, "ai_generation_failed")),
    ],
)
async def test_error_statuses_are_classified(status, expected):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status, json={"error": {"message": "nope"}})

    provider = make_provider(handler)
    try:
        with pytest.raises(ApiError) as exc:
            await provider.invoke("p", "m", 0.5, "c")
    finally:
        await provider.aclose()

    assert (exc.value.status_code, exc.value.code) == expected
    # 재시도 없음
    assert len(calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("error_cls", [httpx.ConnectError, httpx.ReadTimeout])
async def test_network_failures_are_provider_unavailable(error_cls):
    def handler(request):
        raise error_cls("boom", request=request)

    provider = make_provider(handler)
    try:
        with pytest.raises(ApiError) as exc:
            await provider.invoke("p", "m", 0.5, "c")
    finally:
        await provider.aclose()

    assert (exc.value.status_code, exc.value.code) == (502, "model_provider_unavailable")


@pytest.mark.asyncio
async def test_empty_content_is_generation_failure():
    provider = make_provider(lambda request: httpx.Response(200, json=completion("   ")))
    try:
        with pytest.raises(ApiError) as exc:
            await provider.invoke("p", "m", 0.5, "c")
    finally:
        await provider.aclose()

    assert (exc.value.status_code, exc.value.code) == (502, "ai_generation_failed")


@pytest.mark.asyncio
async def test_missing_api_key_fails_on_invoke():
    provider = ChatCompletionProvider.from_settings(Settings(ai_api_key=None))
    try:
        with pytest.raises(ApiError) as exc:
            await provider.invoke("p", "m", 0.5, "c")
    finally:
        await provider.aclose()
    assert (exc.value.status_code, exc.value.code) == (500, "generation_configuration_invalid")


@pytest.mark.asyncio
async def test_unparseable_json_body_is_generation_failure():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"<html>oops", headers={"content-type": "application/json"})

    provider = make_provider(handler)
    try:
        with pytest.raises(ApiError) as exc:
            await provider.invoke("p", "m", 0.5, "c")
    finally:
        await provider.aclose()

    assert (exc.value.status_code, exc.value.code) == (502, "ai_generation_failed")
    assert len(calls) == 1
