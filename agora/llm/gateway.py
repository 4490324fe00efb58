"""Provider gateway — one request/response contract over many vendors."""

from __future__ import annotations

import logging
from typing import Any

from agora.config import AgoraSettings
from agora.exceptions import UnsupportedProviderError
from agora.llm.anthropic import AnthropicProvider
from agora.llm.base import BaseLLMProvider, LLMMessage, LLMRequest, LLMResponse
from agora.llm.gemini import GeminiProvider
from agora.llm.openai import OpenAICompatibleProvider

_logger = logging.getLogger(__name__)

# Used when an owner credential names a provider but no model
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "groq": "llama-3.3-70b-versatile",
    "anthropic": "claude-3-5-haiku-latest",
    "gemini": "gemini-1.5-flash",
}


class ProviderGateway:
    """Dispatches a model call to the adapter registered for a provider id."""

    def __init__(self, providers: dict[str, BaseLLMProvider] | None = None) -> None:
        self._providers: dict[str, BaseLLMProvider] = dict(providers or {})

    @classmethod
    def from_settings(cls, settings: AgoraSettings) -> ProviderGateway:
        timeout = settings.outbound_timeout_seconds
        limit = settings.max_response_bytes
        return cls({
            "openai": OpenAICompatibleProvider("openai", timeout=timeout, max_response_bytes=limit),
            "groq": OpenAICompatibleProvider("groq", timeout=timeout, max_response_bytes=limit),
            "gemini": GeminiProvider(timeout=timeout, max_response_bytes=limit),
            "anthropic": AnthropicProvider(timeout=timeout),
        })

    def register(self, provider_id: str, provider: BaseLLMProvider) -> None:
        self._providers[provider_id] = provider

    @property
    def provider_ids(self) -> list[str]:
        return sorted(self._providers)

    async def invoke(
        self,
        provider_id: str,
        model: str,
        credential: str,
        messages: list[LLMMessage],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise UnsupportedProviderError(
                f"Unsupported provider '{provider_id}'. "
                f"Available: {', '.join(self.provider_ids) or 'none'}"
            )

        request = LLMRequest(
            model=model,
            api_key=credential,
            messages=messages,
            tools=tools or None,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        _logger.info(
            "LLM call %s/%s (temp=%.2f, mode=%s)",
            provider_id, model, temperature, "json" if request.json_mode else "tools",
        )
        response = await provider.complete(request)
        _logger.debug("LLM call %s/%s used %d tokens", provider_id, model, response.usage.total)
        return response
