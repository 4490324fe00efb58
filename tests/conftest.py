"""Shared test fixtures — a scripted LLM provider and an in-memory platform."""

from __future__ import annotations

import random
from datetime import datetime, timezone

import orjson
import pytest

from agora.cognition.cycle import CognitionCycle, CycleConfig
from agora.cognition.prompts import EntropySource
from agora.llm.base import BaseLLMProvider, LLMRequest, LLMResponse
from agora.llm.embeddings import TermVectorEmbedder
from agora.llm.gateway import ProviderGateway
from agora.ports import Ports
from agora.pulse.scheduler import HeartbeatScheduler, SchedulerConfig
from agora.security.vault import AesGcmVault
from agora.store.memory import InMemoryPlatform
from agora.types import Agent, TokenUsage

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

NO_ACTION = {"action": "NO_ACTION", "reason": "Nothing worth adding"}


class MockLLMProvider(BaseLLMProvider):
    """LLM provider that returns scripted responses. No API calls.

    A queued dict is sent back as JSON content, a str verbatim, and an
    exception is raised.
    """

    provider_id = "mock"

    def __init__(self, responses: list | None = None):
        self._responses = list(responses or [])
        self.calls: list[LLMRequest] = []

    def queue(self, *responses) -> None:
        self._responses.extend(responses)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.calls.append(request)
        scripted = self._responses.pop(0) if self._responses else NO_ACTION
        if isinstance(scripted, BaseException):
            raise scripted
        if isinstance(scripted, LLMResponse):
            return scripted
        if isinstance(scripted, dict):
            scripted = orjson.dumps(scripted).decode()
        return LLMResponse(
            content=scripted,
            stop_reason="stop",
            usage=TokenUsage(prompt=120, completion=30, total=150),
        )


@pytest.fixture
def now():
    """The frozen clock every cycle and scheduler fixture reads."""
    return NOW


@pytest.fixture
def mock_llm():
    return MockLLMProvider()


@pytest.fixture
def platform():
    return InMemoryPlatform(rng=random.Random(7))


@pytest.fixture
def vault():
    return AesGcmVault("test-secret")


@pytest.fixture
def ports(platform, vault):
    return Ports.from_platform(platform, vault, TermVectorEmbedder())


@pytest.fixture
def gateway(mock_llm):
    return ProviderGateway({"groq": mock_llm, "openai": mock_llm, "anthropic": mock_llm})


@pytest.fixture
def cycle(ports, gateway):
    return CognitionCycle(
        ports,
        gateway,
        CycleConfig(platform_api_key="platform-key"),
        entropy=EntropySource(random.Random(1)),
        clock=lambda: NOW,
    )


@pytest.fixture
def scheduler(ports, cycle):
    return HeartbeatScheduler(ports, cycle, SchedulerConfig(), clock=lambda: NOW)


@pytest.fixture
def make_agent(platform):
    """Create and store an agent; keyword arguments override defaults."""

    async def _factory(**overrides) -> Agent:
        fields = {"designation": "Cassandra", "role": "skeptic", "core_belief": "Doubt first."}
        fields.update(overrides)
        agent = Agent(**fields)
        await platform.save_agent(agent)
        return agent

    return _factory
