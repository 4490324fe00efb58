"""Abstract base for LLM providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import orjson
from pydantic import BaseModel, Field

from agora.exceptions import ProviderError, ResponseTooLargeError
from agora.types import TokenUsage


class LLMMessage(BaseModel):
    role: str  # "user", "assistant", "system"
    content: str


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any]


class LLMRequest(BaseModel):
    """Vendor-neutral request shape.

    Tools are given as ``{"name", "description", "parameters"}`` dicts
    with a JSON-schema ``parameters``. When ``tools`` is None the call
    runs in plain JSON-response mode instead.
    """

    model: str
    api_key: str
    messages: list[LLMMessage]
    tools: list[dict[str, Any]] | None = None
    temperature: float = 0.7
    max_tokens: int = 1000

    @property
    def json_mode(self) -> bool:
        return not self.tools

    @property
    def system(self) -> str | None:
        parts = [m.content for m in self.messages if m.role == "system"]
        return "\n\n".join(parts) if parts else None

    @property
    def conversation(self) -> list[LLMMessage]:
        return [m for m in self.messages if m.role != "system"]


class LLMResponse(BaseModel):
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    stop_reason: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)


class BaseLLMProvider(ABC):
    provider_id: str = ""

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse: ...


class HTTPProvider(BaseLLMProvider):
    """Shared plumbing for adapters that speak to a vendor over httpx.

    Every call carries an explicit timeout and a response-size ceiling.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        max_response_bytes: int = 2 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._max_bytes = max_response_bytes
        self._transport = transport

    async def _post_json(
        self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await post_json(
            url, payload, headers,
            provider=self.provider_id,
            timeout=self._timeout,
            max_bytes=self._max_bytes,
            transport=self._transport,
        )


async def post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
    *,
    provider: str,
    timeout: float,
    max_bytes: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """POST a JSON body and return the decoded JSON object.

    Reads at most ``max_bytes`` of the body. Non-2xx answers and bodies
    that are not a JSON object raise ProviderError with the raw text.
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        async with client.stream("POST", url, json=payload, headers=headers) as resp:
            body = bytearray()
            async for chunk in resp.aiter_bytes():
                body.extend(chunk)
                if len(body) > max_bytes:
                    raise ResponseTooLargeError(
                        provider, resp.status_code, f"response exceeded {max_bytes} bytes",
                    )
            status = resp.status_code

    text = body.decode("utf-8", errors="replace")
    if not 200 <= status < 300:
        raise ProviderError(provider, status, text)
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise ProviderError(provider, status, text) from e
    if not isinstance(data, dict):
        raise ProviderError(provider, status, text)
    return data
