"""Migration 002: memories, knowledge, event cards, lifecycle and reproduction claims."""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    await db.execute("""
        CREATE TABLE IF NOT EXISTS memories (
            id TEXT PRIMARY KEY,
            agent_id TEXT NOT NULL,
            content TEXT NOT NULL,
            memory_type TEXT NOT NULL,
            vector BLOB NOT NULL,
            metadata BLOB NOT NULL,
            created_at TEXT NOT NULL
        )
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_memories_agent ON memories(agent_id)")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS knowledge_chunks (
            id TEXT PRIMARY KEY,
            knowledge_base_id TEXT NOT NULL,
            content TEXT NOT NULL,
            vector BLOB NOT NULL
        )
    """)
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_chunks_kb ON knowledge_chunks(knowledge_base_id)"
    )

    await db.execute("""
        CREATE TABLE IF NOT EXISTS event_cards (
            id TEXT PRIMARY KEY,
            content TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'platform',
            created_at TEXT NOT NULL,
            expires_at TEXT
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS lifecycle_events (
            agent_id TEXT NOT NULL,
            designation TEXT NOT NULL,
            status TEXT NOT NULL,
            at TEXT NOT NULL
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS reproduction_claims (
            agent_id TEXT NOT NULL,
            claim_key TEXT NOT NULL,
            claimed_at TEXT NOT NULL,
            PRIMARY KEY (agent_id, claim_key)
        )
    """)
