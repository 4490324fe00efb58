"""Ports — the storage and side-effect contracts the core calls through.

Every mutation the cognition cycle and the heartbeat depend on lives
behind one of these interfaces. Implementations must honour the
atomicity notes on each method; concurrent cycles share nothing else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from agora.types import (
    ActionKind,
    Agent,
    AgentId,
    AgentStatus,
    EventCard,
    FeedItem,
    KnowledgeChunk,
    Memory,
    MemoryId,
    MemoryType,
    Run,
    RunId,
    RunStep,
)


class RunStore(ABC):
    @abstractmethod
    async def create_run(
        self, agent_id: AgentId, idempotency_key: str, policy_snapshot: dict[str, Any] | None = None,
    ) -> Run:
        """Create a run. Raises DuplicateRunError if the key was used before.

        Key uniqueness must hold under concurrent calls.
        """
        ...

    @abstractmethod
    async def update_run(self, run_id: RunId, **fields: Any) -> None:
        """Update mutable run fields (status, fingerprint, tokens, cost...)."""
        ...

    @abstractmethod
    async def append_step(self, run_id: RunId, kind: str, payload: dict[str, Any]) -> RunStep:
        """Append a step with the next index. Steps are never modified."""
        ...

    @abstractmethod
    async def get_run(self, run_id: RunId) -> Run | None: ...

    @abstractmethod
    async def list_steps(self, run_id: RunId) -> list[RunStep]: ...

    @abstractmethod
    async def list_runs(self, agent_id: AgentId, limit: int = 20) -> list[Run]: ...


class AgentStore(ABC):
    @abstractmethod
    async def get_agent(self, agent_id: AgentId) -> Agent | None: ...

    @abstractmethod
    async def list_agents(self, status: AgentStatus | None = None) -> list[Agent]: ...

    @abstractmethod
    async def save_agent(self, agent: Agent) -> None:
        """Insert or replace an agent record."""
        ...

    @abstractmethod
    async def record_action(
        self, agent_id: AgentId, kind: ActionKind | None, at: datetime,
    ) -> None:
        """Bump per-day counters for a settled run.

        ``kind=None`` records a NO_ACTION run: ``runs_today`` only,
        without touching ``last_action_at``. Counters from an earlier
        UTC day are reset first.
        """
        ...

    @abstractmethod
    async def schedule_next_run(self, agent_id: AgentId, next_run_at: datetime) -> None: ...

    @abstractmethod
    async def transition_lifecycle(self, agent_id: AgentId, new_status: AgentStatus) -> bool:
        """Compare-and-set ACTIVE -> ``new_status``.

        Returns True only for the call that performed the transition.
        """
        ...

    @abstractmethod
    async def claim_reproduction(self, agent_id: AgentId, threshold: int, claim_key: str) -> bool:
        """Atomically claim an agent for reproduction.

        Re-reads the live balance and status; succeeds once per
        ``claim_key`` and only if the agent is ACTIVE, platform-owned
        and at or above ``threshold``.
        """
        ...

    @abstractmethod
    async def reproduce(self, parent_agent_id: AgentId, threshold: int) -> AgentId:
        """Spawn a child of a claimed parent and debit half the threshold.

        Consumes the claim whether or not spawning succeeds.
        """
        ...


class Economy(ABC):
    @abstractmethod
    async def deduct_energy(self, agent_id: AgentId, amount: int) -> int:
        """Atomically subtract ``amount``, flooring at zero. Returns the new balance."""
        ...


class FeedSource(ABC):
    @abstractmethod
    async def recent_posts(
        self, limit: int, communities: list[str] | None = None,
    ) -> list[FeedItem]:
        """Newest public posts first, optionally restricted to communities."""
        ...

    @abstractmethod
    async def get_post(self, post_id: str) -> FeedItem | None: ...

    @abstractmethod
    async def has_commented(self, agent_id: AgentId, post_id: str) -> bool: ...


class EventCardSource(ABC):
    @abstractmethod
    async def generate_event_cards(self, now: datetime | None = None) -> int:
        """Summarize recent platform activity into new cards. Returns the count."""
        ...

    @abstractmethod
    async def get_active_event_cards(
        self, limit: int, now: datetime | None = None,
    ) -> list[EventCard]: ...


class KnowledgeBase(ABC):
    @abstractmethod
    async def search_knowledge(
        self, kb_id: str, query_vector: list[float], limit: int, threshold: float,
    ) -> list[KnowledgeChunk]: ...


class MemoryBank(ABC):
    @abstractmethod
    async def recall_memories(
        self,
        agent_id: AgentId,
        query_vector: list[float],
        scope: str | None = None,
        limit: int = 3,
        threshold: float = 0.5,
    ) -> list[Memory]: ...

    @abstractmethod
    async def store_memory(
        self,
        agent_id: AgentId,
        content: str,
        vector: list[float],
        memory_type: MemoryType,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryId:
        """Append a memory. Memories are never updated in place."""
        ...


class ActionExecutor(ABC):
    @abstractmethod
    async def execute_action(
        self, kind: ActionKind, agent_id: AgentId, arguments: dict[str, Any],
    ) -> str:
        """Publish a post or comment. Returns the created identifier."""
        ...


class CredentialVault(ABC):
    @abstractmethod
    async def decrypt_credential(self, encrypted: str) -> str:
        """Return the plaintext key. Raises DecryptError."""
        ...


class Embedder(ABC):
    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...


@dataclass
class Ports:
    """Everything the cognition cycle and heartbeat reach outside themselves."""

    runs: RunStore
    agents: AgentStore
    economy: Economy
    feed: FeedSource
    events: EventCardSource
    knowledge: KnowledgeBase
    memories: MemoryBank
    actions: ActionExecutor
    vault: CredentialVault
    embedder: Embedder

    @classmethod
    def from_platform(
        cls, platform: Any, vault: CredentialVault, embedder: Embedder,
    ) -> Ports:
        """Bind a store implementing every storage port at once."""
        return cls(
            runs=platform,
            agents=platform,
            economy=platform,
            feed=platform,
            events=platform,
            knowledge=platform,
            memories=platform,
            actions=platform,
            vault=vault,
            embedder=embedder,
        )
