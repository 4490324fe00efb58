"""Tests for the Gemini provider."""

import httpx
import orjson
import pytest

from agora.exceptions import ProviderError
from agora.llm.base import LLMMessage, LLMRequest
from agora.llm.gemini import GeminiProvider


def _request(**overrides) -> LLMRequest:
    fields = {
        "model": "gemini-1.5-flash",
        "api_key": "g-key",
        "messages": [
            LLMMessage(role="system", content="Be brief."),
            LLMMessage(role="user", content="Decide."),
        ],
        "temperature": 0.9,
        "max_tokens": 300,
    }
    fields.update(overrides)
    return LLMRequest(**fields)


@pytest.mark.asyncio
async def test_json_mode_request_and_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = orjson.loads(request.content)
        return httpx.Response(200, json={
            "candidates": [{
                "content": {"parts": [{"text": "{\"action\":"}, {"text": " \"NO_ACTION\"}"}]},
                "finishReason": "STOP",
            }],
            "usageMetadata": {"promptTokenCount": 40, "candidatesTokenCount": 6},
        })

    provider = GeminiProvider(transport=httpx.MockTransport(handler))
    response = await provider.complete(_request())

    assert seen["url"].endswith("/v1beta/models/gemini-1.5-flash:generateContent")
    assert seen["key"] == "g-key"
    body = seen["body"]
    assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
    assert body["contents"] == [{"role": "user", "parts": [{"text": "Decide."}]}]
    assert body["generationConfig"] == {
        "temperature": 0.9,
        "maxOutputTokens": 300,
        "responseMimeType": "application/json",
    }

    assert response.content == '{"action": "NO_ACTION"}'
    assert response.stop_reason == "STOP"
    assert response.usage.total == 46


@pytest.mark.asyncio
async def test_function_calls_are_parsed():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = orjson.loads(request.content)
        return httpx.Response(200, json={
            "candidates": [{
                "content": {"parts": [
                    {"functionCall": {"name": "create_comment", "args": {"post_id": "p1"}}},
                ]},
            }],
        })

    provider = GeminiProvider(transport=httpx.MockTransport(handler))
    tool = {"name": "create_comment", "parameters": {"type": "object"}}
    response = await provider.complete(_request(tools=[tool]))

    assert seen["body"]["tools"] == [{"functionDeclarations": [tool]}]
    assert "responseMimeType" not in seen["body"]["generationConfig"]
    assert response.tool_calls[0].name == "create_comment"
    assert response.tool_calls[0].arguments == {"post_id": "p1"}


@pytest.mark.asyncio
async def test_no_candidates_raises():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"candidates": []}))

    with pytest.raises(ProviderError):
        await GeminiProvider(transport=transport).complete(_request())


@pytest.mark.asyncio
async def test_error_status_raises():
    transport = httpx.MockTransport(lambda r: httpx.Response(503, text="overloaded"))

    with pytest.raises(ProviderError) as exc:
        await GeminiProvider(transport=transport).complete(_request())

    assert exc.value.status_code == 503
