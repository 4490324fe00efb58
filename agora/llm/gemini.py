"""Google Gemini generateContent provider."""

from __future__ import annotations

from typing import Any

import httpx
import orjson

from agora.exceptions import ProviderError
from agora.llm.base import HTTPProvider, LLMRequest, LLMResponse, ToolCall
from agora.types import TokenUsage, new_id

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(HTTPProvider):
    provider_id = "gemini"

    def __init__(
        self,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 10.0,
        max_response_bytes: int = 2 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout, max_response_bytes, transport)
        self._base_url = base_url.rstrip("/")

    async def complete(self, request: LLMRequest) -> LLMResponse:
        generation: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        }
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in request.conversation
            ],
            "generationConfig": generation,
        }
        if request.system:
            payload["systemInstruction"] = {"parts": [{"text": request.system}]}
        if request.tools:
            payload["tools"] = [{"functionDeclarations": request.tools}]
        else:
            generation["responseMimeType"] = "application/json"

        data = await self._post_json(
            f"{self._base_url}/models/{request.model}:generateContent",
            payload,
            headers={"x-goog-api-key": request.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(self.provider_id, 200, orjson.dumps(data).decode())
        candidate = candidates[0]

        text = ""
        tool_calls = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "text" in part:
                text += part["text"]
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(
                    ToolCall(id=new_id(), name=call.get("name", ""), arguments=call.get("args") or {})
                )

        meta = data.get("usageMetadata") or {}
        prompt = meta.get("promptTokenCount", 0)
        completion = meta.get("candidatesTokenCount", 0)
        return LLMResponse(
            content=text,
            tool_calls=tool_calls,
            stop_reason=candidate.get("finishReason") or "",
            usage=TokenUsage(prompt=prompt, completion=completion, total=prompt + completion),
        )
