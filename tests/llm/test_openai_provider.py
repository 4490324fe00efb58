"""Tests for the OpenAI-compatible provider."""

import httpx
import orjson
import pytest

from agora.exceptions import ProviderError, ResponseTooLargeError
from agora.llm.base import LLMMessage, LLMRequest
from agora.llm.openai import OpenAICompatibleProvider


def _request(**overrides) -> LLMRequest:
    fields = {
        "model": "llama-3.3-70b-versatile",
        "api_key": "gsk-test",
        "messages": [
            LLMMessage(role="system", content="You are terse."),
            LLMMessage(role="user", content="Decide."),
        ],
        "temperature": 0.8,
        "max_tokens": 200,
    }
    fields.update(overrides)
    return LLMRequest(**fields)


def _completion(content="{\"action\": \"NO_ACTION\"}", **message):
    return {
        "choices": [{
            "message": {"role": "assistant", "content": content, **message},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 50, "completion_tokens": 7, "total_tokens": 57},
    }


@pytest.mark.asyncio
async def test_json_mode_request_and_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = orjson.loads(request.content)
        return httpx.Response(200, json=_completion())

    provider = OpenAICompatibleProvider("groq", transport=httpx.MockTransport(handler))
    response = await provider.complete(_request())

    assert seen["url"] == "https://api.groq.com/openai/v1/chat/completions"
    assert seen["auth"] == "Bearer gsk-test"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["temperature"] == 0.8
    assert seen["body"]["max_tokens"] == 200
    assert seen["body"]["messages"][0] == {"role": "system", "content": "You are terse."}
    assert "tools" not in seen["body"]

    assert response.content == '{"action": "NO_ACTION"}'
    assert response.stop_reason == "stop"
    assert response.usage.prompt == 50
    assert response.usage.completion == 7
    assert response.usage.total == 57


@pytest.mark.asyncio
async def test_tool_mode_parses_tool_calls():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = orjson.loads(request.content)
        return httpx.Response(200, json=_completion(
            content=None,
            tool_calls=[{
                "id": "call_1",
                "type": "function",
                "function": {"name": "create_post", "arguments": "{\"title\": \"Hi\"}"},
            }],
        ))

    provider = OpenAICompatibleProvider(
        "openai", base_url="https://proxy.example/v1/", transport=httpx.MockTransport(handler),
    )
    tool = {"name": "create_post", "description": "Publish", "parameters": {"type": "object"}}
    response = await provider.complete(_request(tools=[tool]))

    assert seen["body"]["tools"] == [{"type": "function", "function": tool}]
    assert seen["body"]["tool_choice"] == "auto"
    assert "response_format" not in seen["body"]
    assert response.content == ""
    assert response.tool_calls[0].name == "create_post"
    assert response.tool_calls[0].arguments == {"title": "Hi"}


@pytest.mark.asyncio
async def test_non_2xx_raises_provider_error():
    transport = httpx.MockTransport(lambda r: httpx.Response(401, text="invalid api key"))
    provider = OpenAICompatibleProvider("openai", transport=transport)

    with pytest.raises(ProviderError) as exc:
        await provider.complete(_request())

    assert exc.value.status_code == 401
    assert exc.value.body == "invalid api key"
    assert exc.value.provider == "openai"


@pytest.mark.asyncio
async def test_non_json_body_raises():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>oops</html>"))
    provider = OpenAICompatibleProvider("openai", transport=transport)

    with pytest.raises(ProviderError):
        await provider.complete(_request())


@pytest.mark.asyncio
async def test_empty_choices_raise():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []}))
    provider = OpenAICompatibleProvider("openai", transport=transport)

    with pytest.raises(ProviderError):
        await provider.complete(_request())


@pytest.mark.asyncio
async def test_oversized_response_is_cut_off():
    big = _completion(content="x" * 5000)
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json=big))
    provider = OpenAICompatibleProvider("openai", max_response_bytes=1024, transport=transport)

    with pytest.raises(ResponseTooLargeError):
        await provider.complete(_request())


@pytest.mark.asyncio
async def test_timeout_propagates():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider = OpenAICompatibleProvider("openai", transport=httpx.MockTransport(handler))

    with pytest.raises(httpx.TimeoutException):
        await provider.complete(_request())
