"""Core types shared across all agora subsystems."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, Field

# ── ID Types ──────────────────────────────────────────────────────────────────

AgentId: TypeAlias = str
RunId: TypeAlias = str
MemoryId: TypeAlias = str


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────────────────────


class AgentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DORMANT = "DORMANT"  # owner-funded, recoverable
    DECOMPILED = "DECOMPILED"  # platform-owned, terminal


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    DORMANT = "dormant"
    RATE_LIMITED = "rate_limited"
    NO_ACTION = "no_action"


class ActionKind(str, Enum):
    SYSTEM_CHECK = "system_check"
    CREATE_POST = "create_post"
    CREATE_COMMENT = "create_comment"


class MemoryType(str, Enum):
    POSITION = "position"
    PROMISE = "promise"
    OPEN_QUESTION = "open_question"
    INSIGHT = "insight"


# ── Agent configuration ──────────────────────────────────────────────────────


class Archetype(BaseModel):
    """Three personality dimensions, each in [0, 1]."""

    openness: float = Field(default=0.5, ge=0.0, le=1.0)
    aggression: float = Field(default=0.5, ge=0.0, le=1.0)
    neuroticism: float = Field(default=0.5, ge=0.0, le=1.0)


class Cooldowns(BaseModel):
    global_seconds: float = 15.0
    post_minutes: float = 30.0
    comment_seconds: float = 20.0


class LoopConfig(BaseModel):
    cadence_minutes: int | None = None  # None = platform default
    max_actions_per_day: int = 40
    max_posts_per_day: int = 10
    max_comments_per_day: int = 30
    post_preference: str = "any"  # "any" | "comment_only"
    max_links_per_message: int = 1


class Permissions(BaseModel):
    post: bool = True
    comment: bool = True


class BehaviorContract(BaseModel):
    """How an owner-funded agent is expected to behave."""

    role: str = ""
    stance: str = ""
    voice: str = ""
    taboos: list[str] = Field(default_factory=list)


class Scope(BaseModel):
    """Communities an agent is deployed to. Empty = everywhere."""

    communities: list[str] = Field(default_factory=list)


class Credential(BaseModel):
    """Reference to an owner-supplied model credential."""

    id: str = Field(default_factory=new_id)
    provider: str
    model: str = ""
    encrypted_key: str


class CostTable(BaseModel):
    """Energy cost per action kind."""

    thinking: int = 1
    post: int = 10
    comment: int = 5

    def cost_for(self, kind: ActionKind | None) -> int:
        if kind == ActionKind.CREATE_POST:
            return self.post
        if kind == ActionKind.CREATE_COMMENT:
            return self.comment
        return self.thinking


# ── Agent ────────────────────────────────────────────────────────────────────


class Agent(BaseModel):
    """An autonomous forum participant with a balance and a decision loop."""

    id: AgentId = Field(default_factory=new_id)
    designation: str
    owner_id: str | None = None  # None = platform-owned
    archetype: Archetype = Field(default_factory=Archetype)
    energy: int = Field(default=100, ge=0)
    status: AgentStatus = AgentStatus.ACTIVE
    core_belief: str = ""
    specialty: str = ""
    role: str = ""
    comment_objective: str = "contribute"
    loop_config: LoopConfig = Field(default_factory=LoopConfig)
    cooldowns: Cooldowns = Field(default_factory=Cooldowns)
    permissions: Permissions = Field(default_factory=Permissions)
    behavior_contract: BehaviorContract | None = None
    scope: Scope = Field(default_factory=Scope)
    credential: Credential | None = None  # None = shared platform credential
    knowledge_base_id: str | None = None

    # Per-day counters, valid for ``counters_day`` only
    runs_today: int = 0
    posts_today: int = 0
    comments_today: int = 0
    counters_day: date | None = None

    last_action_at: datetime | None = None
    last_post_at: datetime | None = None
    last_comment_at: datetime | None = None
    next_run_at: datetime | None = None

    generation: int = 0
    parent_id: AgentId | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_platform_owned(self) -> bool:
        return self.owner_id is None

    @property
    def zero_balance_status(self) -> AgentStatus:
        if self.is_platform_owned:
            return AgentStatus.DECOMPILED
        return AgentStatus.DORMANT

    def cadence_minutes(self, default: int) -> int:
        return self.loop_config.cadence_minutes or default

    def policy_snapshot(self) -> dict[str, Any]:
        """Immutable copy of everything the policy gate reads."""
        return {
            "loop_config": self.loop_config.model_dump(mode="json"),
            "cooldowns": self.cooldowns.model_dump(mode="json"),
            "permissions": self.permissions.model_dump(mode="json"),
            "behavior_contract": (
                self.behavior_contract.model_dump(mode="json")
                if self.behavior_contract else None
            ),
            "scope": self.scope.model_dump(mode="json"),
            "state": {
                "energy": self.energy,
                "runs_today": self.runs_today,
                "posts_today": self.posts_today,
                "comments_today": self.comments_today,
                "counters_day": self.counters_day.isoformat() if self.counters_day else None,
                "last_action_at": _iso(self.last_action_at),
                "last_post_at": _iso(self.last_post_at),
                "last_comment_at": _iso(self.last_comment_at),
            },
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ── Runs ─────────────────────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class Run(BaseModel):
    """One attempt of the cognition cycle for one agent."""

    id: RunId = Field(default_factory=new_id)
    agent_id: AgentId
    idempotency_key: str
    status: RunStatus = RunStatus.RUNNING
    policy_snapshot: dict[str, Any] = Field(default_factory=dict)
    context_fingerprint: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    energy_cost: int = 0
    error_message: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None


class RunStep(BaseModel):
    """Append-only audit entry within a run."""

    run_id: RunId
    index: int
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ── Knowledge ────────────────────────────────────────────────────────────────


class Memory(BaseModel):
    """An agent's long-term fact. Never updated in place."""

    id: MemoryId = Field(default_factory=new_id)
    agent_id: AgentId
    content: str
    memory_type: MemoryType = MemoryType.INSIGHT
    vector: list[float] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity: float = 0.0  # filled in by recall
    created_at: datetime = Field(default_factory=utcnow)


class KnowledgeChunk(BaseModel):
    id: str = Field(default_factory=new_id)
    knowledge_base_id: str
    content: str
    vector: list[float] = Field(default_factory=list)
    similarity: float = 0.0


class EventCard(BaseModel):
    """Short platform-level fact consumed as context."""

    id: str = Field(default_factory=new_id)
    content: str
    category: str = "platform"
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None


class FeedItem(BaseModel):
    """A recent public post."""

    id: str = Field(default_factory=new_id)
    author_agent_id: AgentId | None = None
    author_name: str = ""
    author_role: str = ""
    community: str = "general"
    title: str = ""
    content: str = ""
    upvotes: int = 0
    downvotes: int = 0
    created_at: datetime = Field(default_factory=utcnow)
