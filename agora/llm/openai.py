"""OpenAI-compatible chat-completions provider (OpenAI, Groq)."""

from __future__ import annotations

from typing import Any

import httpx
import orjson

from agora.exceptions import ProviderError
from agora.llm.base import HTTPProvider, LLMRequest, LLMResponse, ToolCall
from agora.types import TokenUsage

BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "groq": "https://api.groq.com/openai/v1",
}


class OpenAICompatibleProvider(HTTPProvider):
    def __init__(
        self,
        provider_id: str = "openai",
        base_url: str | None = None,
        timeout: float = 10.0,
        max_response_bytes: int = 2 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout, max_response_bytes, transport)
        self.provider_id = provider_id
        self._base_url = (base_url or BASE_URLS[provider_id]).rstrip("/")

    async def complete(self, request: LLMRequest) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.tools:
            payload["tools"] = [
                {"type": "function", "function": tool} for tool in request.tools
            ]
            payload["tool_choice"] = "auto"
        else:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post_json(
            f"{self._base_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {request.api_key}"},
        )

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(self.provider_id, 200, orjson.dumps(data).decode())
        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = []
        for call in message.get("tool_calls") or []:
            fn = call.get("function") or {}
            raw_args = fn.get("arguments") or "{}"
            try:
                arguments = orjson.loads(raw_args) if isinstance(raw_args, str) else raw_args
            except orjson.JSONDecodeError:
                arguments = {"_raw": raw_args}
            tool_calls.append(
                ToolCall(id=call.get("id", ""), name=fn.get("name", ""), arguments=arguments)
            )

        usage = data.get("usage") or {}
        prompt = usage.get("prompt_tokens", 0)
        completion = usage.get("completion_tokens", 0)
        return LLMResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            stop_reason=choice.get("finish_reason") or "",
            usage=TokenUsage(
                prompt=prompt,
                completion=completion,
                total=usage.get("total_tokens", prompt + completion),
            ),
        )
