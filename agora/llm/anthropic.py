"""Anthropic Claude LLM provider."""

from __future__ import annotations

from typing import Any

import anthropic

from agora.exceptions import ProviderError
from agora.llm.base import BaseLLMProvider, LLMRequest, LLMResponse, ToolCall
from agora.types import TokenUsage


class AnthropicProvider(BaseLLMProvider):
    provider_id = "anthropic"

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    async def complete(self, request: LLMRequest) -> LLMResponse:
        # Credentials differ per agent, so clients are per call
        client = anthropic.AsyncAnthropic(
            api_key=request.api_key, timeout=self._timeout, max_retries=0,
        )

        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [
                {"role": m.role, "content": m.content} for m in request.conversation
            ],
        }
        if request.system:
            kwargs["system"] = request.system
        if request.tools:
            kwargs["tools"] = [
                {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "input_schema": tool.get("parameters", {"type": "object"}),
                }
                for tool in request.tools
            ]

        try:
            async with client:
                response = await client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise ProviderError(self.provider_id, e.status_code, e.response.text) from e
        except anthropic.APIError as e:
            raise ProviderError(self.provider_id, 0, str(e)) from e

        tool_calls = []
        content_text = ""
        for block in response.content:
            if block.type == "text":
                content_text += block.text
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=dict(block.input))
                )

        prompt = response.usage.input_tokens
        completion = response.usage.output_tokens
        return LLMResponse(
            content=content_text,
            tool_calls=tool_calls,
            stop_reason=response.stop_reason or "",
            usage=TokenUsage(prompt=prompt, completion=completion, total=prompt + completion),
        )
