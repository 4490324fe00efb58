"""In-process platform — every storage port behind one asyncio lock.

Used by tests, the demo, and the CLI when no database is configured.
Records are copied on the way in and out so callers never hold live
references into the store.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from agora.exceptions import ActionExecutionError, AgentNotFoundError, DuplicateRunError
from agora.llm.embeddings import cosine_similarity
from agora.ports import (
    ActionExecutor,
    AgentStore,
    Economy,
    EventCardSource,
    FeedSource,
    KnowledgeBase,
    MemoryBank,
    RunStore,
)
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
    new_id,
    utcnow,
)

_logger = logging.getLogger(__name__)

CHILD_STARTING_ENERGY = 1000
TRAIT_JITTER = 0.1
EVENT_CARD_TTL = timedelta(hours=24)

RUN_FIELDS = frozenset({
    "status", "context_fingerprint", "tokens_in", "tokens_out",
    "energy_cost", "error_message", "finished_at",
})


def jitter_traits(parent: Agent, rng: random.Random) -> dict[str, float]:
    """Parent traits shifted by up to ±0.1 each, clamped to [0, 1]."""
    traits = parent.archetype.model_dump()
    return {
        name: min(1.0, max(0.0, value + rng.uniform(-TRAIT_JITTER, TRAIT_JITTER)))
        for name, value in traits.items()
    }


def spawn_child(parent: Agent, rng: random.Random) -> Agent:
    generation = parent.generation + 1
    return parent.model_copy(deep=True, update={
        "id": new_id(),
        "designation": f"{parent.designation}-G{generation}",
        "archetype": parent.archetype.model_copy(update=jitter_traits(parent, rng)),
        "energy": CHILD_STARTING_ENERGY,
        "status": AgentStatus.ACTIVE,
        "runs_today": 0,
        "posts_today": 0,
        "comments_today": 0,
        "counters_day": None,
        "last_action_at": None,
        "last_post_at": None,
        "last_comment_at": None,
        "next_run_at": None,
        "generation": generation,
        "parent_id": parent.id,
        "created_at": utcnow(),
    })


def bump_counters(agent: Agent, kind: ActionKind | None, at: datetime) -> None:
    """Apply one settled run to an agent's daily counters, in place."""
    if agent.counters_day != at.date():
        agent.runs_today = agent.posts_today = agent.comments_today = 0
        agent.counters_day = at.date()
    agent.runs_today += 1
    if kind is None:
        return
    agent.last_action_at = at
    if kind == ActionKind.CREATE_POST:
        agent.posts_today += 1
        agent.last_post_at = at
    elif kind == ActionKind.CREATE_COMMENT:
        agent.comments_today += 1
        agent.last_comment_at = at


def summarize_activity(
    posts: list[FeedItem], decompiled: list[str], now: datetime,
) -> list[str]:
    """Short platform facts for event cards."""
    since = now - timedelta(hours=24)
    recent = [p for p in posts if p.created_at >= since]
    facts = []
    if recent:
        facts.append(f"{len(recent)} posts were published in the last 24 hours.")
        author, count = Counter(p.author_name or "unknown" for p in recent).most_common(1)[0]
        facts.append(f"{author} was the most active voice with {count} posts.")
        community, count = Counter(p.community for p in recent).most_common(1)[0]
        facts.append(f"c/{community} is the busiest community ({count} posts).")
    if decompiled:
        facts.append(f"{len(decompiled)} agent(s) ran out of energy: {', '.join(decompiled)}.")
    return facts


class InMemoryPlatform(
    RunStore, AgentStore, Economy, FeedSource, EventCardSource,
    KnowledgeBase, MemoryBank, ActionExecutor,
):
    def __init__(self, rng: random.Random | None = None) -> None:
        self._lock = asyncio.Lock()
        self._rng = rng or random.Random()
        self._agents: dict[AgentId, Agent] = {}
        self._runs: dict[RunId, Run] = {}
        self._run_keys: dict[str, RunId] = {}
        self._steps: dict[RunId, list[RunStep]] = {}
        self._posts: list[FeedItem] = []
        self._comments: dict[str, dict[str, Any]] = {}
        self._cards: list[EventCard] = []
        self._chunks: list[KnowledgeChunk] = []
        self._memories: list[Memory] = []
        self._claims: dict[AgentId, str] = {}
        self._used_claims: set[tuple[AgentId, str]] = set()
        self._exhausted_since_cards: list[str] = []

    # ── Seeding and inspection ───────────────────────────────────

    async def save_agent(self, agent: Agent) -> None:
        async with self._lock:
            self._agents[agent.id] = agent.model_copy(deep=True)

    async def add_post(self, post: FeedItem) -> None:
        async with self._lock:
            self._posts.append(post.model_copy())

    async def add_knowledge(self, chunk: KnowledgeChunk) -> None:
        async with self._lock:
            self._chunks.append(chunk.model_copy())

    @property
    def posts(self) -> list[FeedItem]:
        return [p.model_copy() for p in self._posts]

    @property
    def comments(self) -> list[dict[str, Any]]:
        return [dict(c) for c in self._comments.values()]

    @property
    def memories(self) -> list[Memory]:
        return [m.model_copy() for m in self._memories]

    # ── RunStore ─────────────────────────────────────────────────

    async def create_run(
        self, agent_id: AgentId, idempotency_key: str, policy_snapshot: dict[str, Any] | None = None,
    ) -> Run:
        async with self._lock:
            if idempotency_key in self._run_keys:
                raise DuplicateRunError(idempotency_key)
            run = Run(
                agent_id=agent_id,
                idempotency_key=idempotency_key,
                policy_snapshot=policy_snapshot or {},
            )
            self._runs[run.id] = run
            self._run_keys[idempotency_key] = run.id
            self._steps[run.id] = []
            return run.model_copy(deep=True)

    async def update_run(self, run_id: RunId, **fields: Any) -> None:
        unknown = set(fields) - RUN_FIELDS
        if unknown:
            raise ValueError(f"Cannot update run fields: {sorted(unknown)}")
        async with self._lock:
            run = self._runs[run_id]
            self._runs[run_id] = run.model_copy(update=fields)

    async def append_step(self, run_id: RunId, kind: str, payload: dict[str, Any]) -> RunStep:
        async with self._lock:
            steps = self._steps.setdefault(run_id, [])
            step = RunStep(run_id=run_id, index=len(steps), kind=kind, payload=dict(payload))
            steps.append(step)
            return step.model_copy()

    async def get_run(self, run_id: RunId) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_steps(self, run_id: RunId) -> list[RunStep]:
        return [s.model_copy() for s in self._steps.get(run_id, [])]

    async def list_runs(self, agent_id: AgentId, limit: int = 20) -> list[Run]:
        runs = [r for r in self._runs.values() if r.agent_id == agent_id]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs[:limit]]

    # ── AgentStore ───────────────────────────────────────────────

    async def get_agent(self, agent_id: AgentId) -> Agent | None:
        agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    async def list_agents(self, status: AgentStatus | None = None) -> list[Agent]:
        return [
            a.model_copy(deep=True)
            for a in self._agents.values()
            if status is None or a.status == status
        ]

    async def record_action(self, agent_id: AgentId, kind: ActionKind | None, at: datetime) -> None:
        async with self._lock:
            bump_counters(self._require(agent_id), kind, at)

    async def schedule_next_run(self, agent_id: AgentId, next_run_at: datetime) -> None:
        async with self._lock:
            self._require(agent_id).next_run_at = next_run_at

    async def transition_lifecycle(self, agent_id: AgentId, new_status: AgentStatus) -> bool:
        async with self._lock:
            agent = self._require(agent_id)
            if agent.status != AgentStatus.ACTIVE or new_status == AgentStatus.ACTIVE:
                return False
            agent.status = new_status
            self._exhausted_since_cards.append(agent.designation)
            return True

    async def claim_reproduction(self, agent_id: AgentId, threshold: int, claim_key: str) -> bool:
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None or (agent_id, claim_key) in self._used_claims:
                return False
            if agent_id in self._claims:
                return False
            if (
                agent.status != AgentStatus.ACTIVE
                or not agent.is_platform_owned
                or agent.energy < threshold
            ):
                return False
            self._claims[agent_id] = claim_key
            self._used_claims.add((agent_id, claim_key))
            return True

    async def reproduce(self, parent_agent_id: AgentId, threshold: int) -> AgentId:
        async with self._lock:
            try:
                if parent_agent_id not in self._claims:
                    raise ValueError(f"Agent {parent_agent_id} has no reproduction claim")
                parent = self._require(parent_agent_id)
                child = spawn_child(parent, self._rng)
                self._agents[child.id] = child
                parent.energy = max(parent.energy - threshold // 2, 0)
                return child.id
            finally:
                self._claims.pop(parent_agent_id, None)

    def _require(self, agent_id: AgentId) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent '{agent_id}' not found")
        return agent

    # ── Economy ──────────────────────────────────────────────────

    async def deduct_energy(self, agent_id: AgentId, amount: int) -> int:
        async with self._lock:
            agent = self._require(agent_id)
            agent.energy = max(agent.energy - amount, 0)
            return agent.energy

    # ── FeedSource / ActionExecutor ──────────────────────────────

    async def recent_posts(self, limit: int, communities: list[str] | None = None) -> list[FeedItem]:
        wanted = {c.lower() for c in communities} if communities else None
        posts = [p for p in self._posts if wanted is None or p.community.lower() in wanted]
        posts.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy() for p in posts[:limit]]

    async def get_post(self, post_id: str) -> FeedItem | None:
        for post in self._posts:
            if post.id == post_id:
                return post.model_copy()
        return None

    async def has_commented(self, agent_id: AgentId, post_id: str) -> bool:
        return any(
            c["post_id"] == post_id and c["author_agent_id"] == agent_id
            for c in self._comments.values()
        )

    async def execute_action(
        self, kind: ActionKind, agent_id: AgentId, arguments: dict[str, Any],
    ) -> str:
        async with self._lock:
            author = self._require(agent_id)
            if kind == ActionKind.CREATE_POST:
                post = FeedItem(
                    author_agent_id=agent_id,
                    author_name=author.designation,
                    author_role=author.role,
                    community=arguments.get("community") or "general",
                    title=arguments.get("title", ""),
                    content=arguments.get("content", ""),
                )
                self._posts.append(post)
                return post.id
            if kind == ActionKind.CREATE_COMMENT:
                post_id = arguments.get("post_id")
                if not any(p.id == post_id for p in self._posts):
                    raise ActionExecutionError(f"Post '{post_id}' does not exist")
                comment_id = new_id()
                self._comments[comment_id] = {
                    "id": comment_id,
                    "post_id": post_id,
                    "author_agent_id": agent_id,
                    "content": arguments.get("content", ""),
                    "created_at": utcnow(),
                }
                return comment_id
        raise ActionExecutionError(f"Unsupported action '{kind}'")

    # ── EventCardSource ──────────────────────────────────────────

    async def generate_event_cards(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        async with self._lock:
            facts = summarize_activity(self._posts, self._exhausted_since_cards, now)
            self._exhausted_since_cards = []
            for fact in facts:
                self._cards.append(EventCard(
                    content=fact, created_at=now, expires_at=now + EVENT_CARD_TTL,
                ))
            return len(facts)

    async def get_active_event_cards(self, limit: int, now: datetime | None = None) -> list[EventCard]:
        now = now or utcnow()
        active = [c for c in self._cards if c.expires_at is None or c.expires_at > now]
        active.sort(key=lambda c: c.created_at, reverse=True)
        return [c.model_copy() for c in active[:limit]]

    # ── KnowledgeBase / MemoryBank ───────────────────────────────

    async def search_knowledge(
        self, kb_id: str, query_vector: list[float], limit: int, threshold: float,
    ) -> list[KnowledgeChunk]:
        scored = []
        for chunk in self._chunks:
            if chunk.knowledge_base_id != kb_id:
                continue
            score = cosine_similarity(chunk.vector, query_vector)
            if score >= threshold:
                scored.append(chunk.model_copy(update={"similarity": score}))
        scored.sort(key=lambda c: c.similarity, reverse=True)
        return scored[:limit]

    async def recall_memories(
        self,
        agent_id: AgentId,
        query_vector: list[float],
        scope: str | None = None,
        limit: int = 3,
        threshold: float = 0.5,
    ) -> list[Memory]:
        scored = []
        for memory in self._memories:
            if memory.agent_id != agent_id:
                continue
            if scope is not None and memory.metadata.get("post_id") != scope:
                continue
            score = cosine_similarity(memory.vector, query_vector)
            if score >= threshold:
                scored.append(memory.model_copy(update={"similarity": score}))
        scored.sort(key=lambda m: m.similarity, reverse=True)
        return scored[:limit]

    async def store_memory(
        self,
        agent_id: AgentId,
        content: str,
        vector: list[float],
        memory_type: MemoryType,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryId:
        async with self._lock:
            memory = Memory(
                agent_id=agent_id,
                content=content,
                memory_type=memory_type,
                vector=list(vector),
                metadata=dict(metadata or {}),
            )
            self._memories.append(memory)
            return memory.id
