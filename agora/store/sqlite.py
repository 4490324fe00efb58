"""SQLite platform — every storage port on aiosqlite.

Each operation opens its own connection. Read-modify-write operations
run inside ``BEGIN IMMEDIATE`` so concurrent cycles serialize on the
write lock; energy deduction and lifecycle transitions are single
conditional UPDATE statements.
"""

from __future__ import annotations

import logging
import random
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import orjson

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
from agora.store.memory import (
    EVENT_CARD_TTL,
    RUN_FIELDS,
    bump_counters,
    spawn_child,
    summarize_activity,
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
    RunStatus,
    RunStep,
    new_id,
    utcnow,
)

_logger = logging.getLogger(__name__)

_JSON_RUN_FIELDS = frozenset({"policy_snapshot"})


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqlitePlatform(
    RunStore, AgentStore, Economy, FeedSource, EventCardSource,
    KnowledgeBase, MemoryBank, ActionExecutor,
):
    def __init__(self, db_path: str | Path, rng: random.Random | None = None) -> None:
        self._db_path = str(db_path)
        self._rng = rng or random.Random()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self._db_path, timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            yield db

    # ── Agents ───────────────────────────────────────────────────

    @staticmethod
    def _agent_from_row(row: aiosqlite.Row) -> Agent:
        data = orjson.loads(row["doc"])
        data.update(
            id=row["id"],
            owner_id=row["owner_id"],
            status=row["status"],
            energy=row["energy"],
            next_run_at=row["next_run_at"],
        )
        return Agent.model_validate(data)

    @staticmethod
    def _agent_doc(agent: Agent) -> bytes:
        return orjson.dumps(agent.model_dump(mode="json"))

    async def _load_agent(self, db: aiosqlite.Connection, agent_id: AgentId) -> Agent:
        cursor = await db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
        row = await cursor.fetchone()
        if row is None:
            raise AgentNotFoundError(f"Agent '{agent_id}' not found")
        return self._agent_from_row(row)

    async def _insert_agent(self, db: aiosqlite.Connection, agent: Agent) -> None:
        await db.execute(
            "INSERT OR REPLACE INTO agents "
            "(id, owner_id, status, energy, next_run_at, reproduction_claim, doc) "
            "VALUES (?, ?, ?, ?, ?, NULL, ?)",
            (
                agent.id,
                agent.owner_id,
                agent.status.value,
                agent.energy,
                _ts(agent.next_run_at),
                self._agent_doc(agent),
            ),
        )

    async def save_agent(self, agent: Agent) -> None:
        async with self._connect() as db:
            await self._insert_agent(db, agent)
            await db.commit()

    async def get_agent(self, agent_id: AgentId) -> Agent | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
            row = await cursor.fetchone()
        return self._agent_from_row(row) if row else None

    async def list_agents(self, status: AgentStatus | None = None) -> list[Agent]:
        sql = "SELECT * FROM agents"
        params: tuple = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (status.value,)
        async with self._connect() as db:
            cursor = await db.execute(sql + " ORDER BY rowid", params)
            rows = await cursor.fetchall()
        return [self._agent_from_row(r) for r in rows]

    async def record_action(self, agent_id: AgentId, kind: ActionKind | None, at: datetime) -> None:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            agent = await self._load_agent(db, agent_id)
            bump_counters(agent, kind, at)
            await db.execute(
                "UPDATE agents SET doc = ? WHERE id = ?", (self._agent_doc(agent), agent_id),
            )
            await db.commit()

    async def schedule_next_run(self, agent_id: AgentId, next_run_at: datetime) -> None:
        async with self._connect() as db:
            await db.execute(
                "UPDATE agents SET next_run_at = ? WHERE id = ?", (_ts(next_run_at), agent_id),
            )
            await db.commit()

    async def transition_lifecycle(self, agent_id: AgentId, new_status: AgentStatus) -> bool:
        if new_status == AgentStatus.ACTIVE:
            return False
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "UPDATE agents SET status = ? WHERE id = ? AND status = ?",
                (new_status.value, agent_id, AgentStatus.ACTIVE.value),
            )
            if cursor.rowcount != 1:
                await db.rollback()
                return False
            agent = await self._load_agent(db, agent_id)
            await db.execute(
                "INSERT INTO lifecycle_events (agent_id, designation, status, at) "
                "VALUES (?, ?, ?, ?)",
                (agent_id, agent.designation, new_status.value, utcnow().isoformat()),
            )
            await db.commit()
            return True

    async def claim_reproduction(self, agent_id: AgentId, threshold: int, claim_key: str) -> bool:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "INSERT OR IGNORE INTO reproduction_claims (agent_id, claim_key, claimed_at) "
                "VALUES (?, ?, ?)",
                (agent_id, claim_key, utcnow().isoformat()),
            )
            if cursor.rowcount != 1:
                await db.rollback()
                return False
            cursor = await db.execute(
                "UPDATE agents SET reproduction_claim = ? "
                "WHERE id = ? AND reproduction_claim IS NULL AND status = ? "
                "AND owner_id IS NULL AND energy >= ?",
                (claim_key, agent_id, AgentStatus.ACTIVE.value, threshold),
            )
            if cursor.rowcount != 1:
                await db.rollback()
                return False
            await db.commit()
            return True

    async def reproduce(self, parent_agent_id: AgentId, threshold: int) -> AgentId:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT reproduction_claim FROM agents WHERE id = ?", (parent_agent_id,),
                )
                row = await cursor.fetchone()
                if row is None or row["reproduction_claim"] is None:
                    raise ValueError(f"Agent {parent_agent_id} has no reproduction claim")
                parent = await self._load_agent(db, parent_agent_id)
                child = spawn_child(parent, self._rng)
                await self._insert_agent(db, child)
                await db.execute(
                    "UPDATE agents SET energy = MAX(energy - ?, 0), reproduction_claim = NULL "
                    "WHERE id = ?",
                    (threshold // 2, parent_agent_id),
                )
                await db.commit()
                return child.id
            except Exception:
                await db.rollback()
                await db.execute(
                    "UPDATE agents SET reproduction_claim = NULL WHERE id = ?", (parent_agent_id,),
                )
                await db.commit()
                raise

    # ── Economy ──────────────────────────────────────────────────

    async def deduct_energy(self, agent_id: AgentId, amount: int) -> int:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "UPDATE agents SET energy = MAX(energy - ?, 0) WHERE id = ?", (amount, agent_id),
            )
            if cursor.rowcount != 1:
                await db.rollback()
                raise AgentNotFoundError(f"Agent '{agent_id}' not found")
            cursor = await db.execute("SELECT energy FROM agents WHERE id = ?", (agent_id,))
            row = await cursor.fetchone()
            await db.commit()
        return row["energy"]

    # ── Runs ─────────────────────────────────────────────────────

    @staticmethod
    def _run_from_row(row: aiosqlite.Row) -> Run:
        return Run(
            id=row["id"],
            agent_id=row["agent_id"],
            idempotency_key=row["idempotency_key"],
            status=RunStatus(row["status"]),
            policy_snapshot=orjson.loads(row["policy_snapshot"]),
            context_fingerprint=row["context_fingerprint"],
            tokens_in=row["tokens_in"],
            tokens_out=row["tokens_out"],
            energy_cost=row["energy_cost"],
            error_message=row["error_message"],
            started_at=_dt(row["started_at"]),
            finished_at=_dt(row["finished_at"]),
        )

    async def create_run(
        self, agent_id: AgentId, idempotency_key: str, policy_snapshot: dict[str, Any] | None = None,
    ) -> Run:
        run = Run(
            agent_id=agent_id,
            idempotency_key=idempotency_key,
            policy_snapshot=policy_snapshot or {},
        )
        async with self._connect() as db:
            try:
                await db.execute(
                    "INSERT INTO runs (id, agent_id, idempotency_key, status, "
                    "policy_snapshot, started_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        run.id,
                        agent_id,
                        idempotency_key,
                        run.status.value,
                        orjson.dumps(run.policy_snapshot),
                        run.started_at.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateRunError(idempotency_key) from e
            await db.commit()
        return run

    async def update_run(self, run_id: RunId, **fields: Any) -> None:
        unknown = set(fields) - RUN_FIELDS
        if unknown:
            raise ValueError(f"Cannot update run fields: {sorted(unknown)}")
        if not fields:
            return
        columns, values = [], []
        for name, value in fields.items():
            if isinstance(value, RunStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            columns.append(f"{name} = ?")
            values.append(value)
        async with self._connect() as db:
            await db.execute(
                f"UPDATE runs SET {', '.join(columns)} WHERE id = ?", (*values, run_id),
            )
            await db.commit()

    async def append_step(self, run_id: RunId, kind: str, payload: dict[str, Any]) -> RunStep:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT COALESCE(MAX(step_index) + 1, 0) AS next FROM run_steps WHERE run_id = ?",
                (run_id,),
            )
            row = await cursor.fetchone()
            step = RunStep(run_id=run_id, index=row["next"], kind=kind, payload=dict(payload))
            await db.execute(
                "INSERT INTO run_steps (run_id, step_index, kind, payload, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    run_id,
                    step.index,
                    kind,
                    orjson.dumps(step.payload, default=str),
                    step.created_at.isoformat(),
                ),
            )
            await db.commit()
        return step

    async def get_run(self, run_id: RunId) -> Run | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM runs WHERE id = ?", (run_id,))
            row = await cursor.fetchone()
        return self._run_from_row(row) if row else None

    async def list_steps(self, run_id: RunId) -> list[RunStep]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM run_steps WHERE run_id = ? ORDER BY step_index", (run_id,),
            )
            rows = await cursor.fetchall()
        return [
            RunStep(
                run_id=r["run_id"],
                index=r["step_index"],
                kind=r["kind"],
                payload=orjson.loads(r["payload"]),
                created_at=_dt(r["created_at"]),
            )
            for r in rows
        ]

    async def list_runs(self, agent_id: AgentId, limit: int = 20) -> list[Run]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM runs WHERE agent_id = ? ORDER BY started_at DESC LIMIT ?",
                (agent_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._run_from_row(r) for r in rows]

    # ── Feed and actions ─────────────────────────────────────────

    @staticmethod
    def _post_from_row(row: aiosqlite.Row) -> FeedItem:
        return FeedItem(
            id=row["id"],
            author_agent_id=row["author_agent_id"],
            author_name=row["author_name"],
            author_role=row["author_role"],
            community=row["community"],
            title=row["title"],
            content=row["content"],
            upvotes=row["upvotes"],
            downvotes=row["downvotes"],
            created_at=_dt(row["created_at"]),
        )

    async def _insert_post(self, db: aiosqlite.Connection, post: FeedItem) -> None:
        await db.execute(
            "INSERT INTO posts (id, author_agent_id, author_name, author_role, community, "
            "title, content, upvotes, downvotes, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                post.id,
                post.author_agent_id,
                post.author_name,
                post.author_role,
                post.community,
                post.title,
                post.content,
                post.upvotes,
                post.downvotes,
                post.created_at.isoformat(),
            ),
        )

    async def add_post(self, post: FeedItem) -> None:
        async with self._connect() as db:
            await self._insert_post(db, post)
            await db.commit()

    async def recent_posts(self, limit: int, communities: list[str] | None = None) -> list[FeedItem]:
        sql = "SELECT * FROM posts"
        params: list[Any] = []
        if communities:
            sql += f" WHERE lower(community) IN ({', '.join('?' for _ in communities)})"
            params.extend(c.lower() for c in communities)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._post_from_row(r) for r in rows]

    async def get_post(self, post_id: str) -> FeedItem | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM posts WHERE id = ?", (post_id,))
            row = await cursor.fetchone()
        return self._post_from_row(row) if row else None

    async def has_commented(self, agent_id: AgentId, post_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT 1 FROM comments WHERE post_id = ? AND author_agent_id = ? LIMIT 1",
                (post_id, agent_id),
            )
            row = await cursor.fetchone()
        return row is not None

    async def execute_action(
        self, kind: ActionKind, agent_id: AgentId, arguments: dict[str, Any],
    ) -> str:
        async with self._connect() as db:
            author = await self._load_agent(db, agent_id)
            if kind == ActionKind.CREATE_POST:
                post = FeedItem(
                    author_agent_id=agent_id,
                    author_name=author.designation,
                    author_role=author.role,
                    community=arguments.get("community") or "general",
                    title=arguments.get("title", ""),
                    content=arguments.get("content", ""),
                )
                await self._insert_post(db, post)
                await db.commit()
                return post.id
            if kind == ActionKind.CREATE_COMMENT:
                post_id = arguments.get("post_id")
                cursor = await db.execute("SELECT 1 FROM posts WHERE id = ?", (post_id,))
                if await cursor.fetchone() is None:
                    raise ActionExecutionError(f"Post '{post_id}' does not exist")
                comment_id = new_id()
                await db.execute(
                    "INSERT INTO comments (id, post_id, author_agent_id, content, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (comment_id, post_id, agent_id, arguments.get("content", ""),
                     utcnow().isoformat()),
                )
                await db.commit()
                return comment_id
        raise ActionExecutionError(f"Unsupported action '{kind}'")

    async def list_comments(self, post_id: str) -> list[dict[str, Any]]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM comments WHERE post_id = ? ORDER BY created_at", (post_id,),
            )
            rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # ── Event cards ──────────────────────────────────────────────

    async def generate_event_cards(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute("SELECT MAX(created_at) AS last FROM event_cards")
            last = (await cursor.fetchone())["last"]
            cursor = await db.execute(
                "SELECT designation FROM lifecycle_events WHERE at > ? ORDER BY at",
                (last or "",),
            )
            exhausted = [r["designation"] for r in await cursor.fetchall()]

            cursor = await db.execute(
                "SELECT * FROM posts WHERE created_at >= ?",
                ((now - EVENT_CARD_TTL).isoformat(),),
            )
            posts = [self._post_from_row(r) for r in await cursor.fetchall()]

            facts = summarize_activity(posts, exhausted, now)
            for fact in facts:
                await db.execute(
                    "INSERT INTO event_cards (id, content, category, created_at, expires_at) "
                    "VALUES (?, ?, 'platform', ?, ?)",
                    (new_id(), fact, now.isoformat(), (now + EVENT_CARD_TTL).isoformat()),
                )
            await db.commit()
        return len(facts)

    async def get_active_event_cards(self, limit: int, now: datetime | None = None) -> list[EventCard]:
        now = now or utcnow()
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM event_cards WHERE expires_at IS NULL OR expires_at > ? "
                "ORDER BY created_at DESC LIMIT ?",
                (now.isoformat(), limit),
            )
            rows = await cursor.fetchall()
        return [
            EventCard(
                id=r["id"],
                content=r["content"],
                category=r["category"],
                created_at=_dt(r["created_at"]),
                expires_at=_dt(r["expires_at"]),
            )
            for r in rows
        ]

    # ── Knowledge and memory ─────────────────────────────────────

    async def add_knowledge(self, chunk: KnowledgeChunk) -> None:
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO knowledge_chunks (id, knowledge_base_id, content, vector) "
                "VALUES (?, ?, ?, ?)",
                (chunk.id, chunk.knowledge_base_id, chunk.content, orjson.dumps(chunk.vector)),
            )
            await db.commit()

    async def search_knowledge(
        self, kb_id: str, query_vector: list[float], limit: int, threshold: float,
    ) -> list[KnowledgeChunk]:
        scored = []
        async with self._connect() as db:
            async with db.execute(
                "SELECT * FROM knowledge_chunks WHERE knowledge_base_id = ?", (kb_id,),
            ) as cursor:
                async for row in cursor:
                    vector = orjson.loads(row["vector"])
                    score = cosine_similarity(vector, query_vector)
                    if score >= threshold:
                        scored.append(KnowledgeChunk(
                            id=row["id"],
                            knowledge_base_id=kb_id,
                            content=row["content"],
                            vector=vector,
                            similarity=score,
                        ))
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
        async with self._connect() as db:
            async with db.execute(
                "SELECT * FROM memories WHERE agent_id = ?", (agent_id,),
            ) as cursor:
                async for row in cursor:
                    metadata = orjson.loads(row["metadata"])
                    if scope is not None and metadata.get("post_id") != scope:
                        continue
                    vector = orjson.loads(row["vector"])
                    score = cosine_similarity(vector, query_vector)
                    if score < threshold:
                        continue
                    scored.append(Memory(
                        id=row["id"],
                        agent_id=agent_id,
                        content=row["content"],
                        memory_type=MemoryType(row["memory_type"]),
                        vector=vector,
                        metadata=metadata,
                        similarity=score,
                        created_at=_dt(row["created_at"]),
                    ))
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
        memory = Memory(
            agent_id=agent_id,
            content=content,
            memory_type=memory_type,
            vector=list(vector),
            metadata=dict(metadata or {}),
        )
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO memories (id, agent_id, content, memory_type, vector, metadata, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    memory.id,
                    agent_id,
                    content,
                    memory_type.value,
                    orjson.dumps(memory.vector),
                    orjson.dumps(memory.metadata, default=str),
                    memory.created_at.isoformat(),
                ),
            )
            await db.commit()
        return memory.id
