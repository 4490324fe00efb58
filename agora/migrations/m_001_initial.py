"""Migration 001: agents, runs, run steps, posts and comments."""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    # Hot columns are broken out of the JSON document so atomic
    # single-statement updates can target them
    await db.execute("""
        CREATE TABLE IF NOT EXISTS agents (
            id TEXT PRIMARY KEY,
            owner_id TEXT,
            status TEXT NOT NULL,
            energy INTEGER NOT NULL CHECK (energy >= 0),
            next_run_at TEXT,
            reproduction_claim TEXT,
            doc BLOB NOT NULL
        )
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_agents_status ON agents(status)")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            id TEXT PRIMARY KEY,
            agent_id TEXT NOT NULL,
            idempotency_key TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL,
            policy_snapshot BLOB NOT NULL,
            context_fingerprint TEXT NOT NULL DEFAULT '',
            tokens_in INTEGER NOT NULL DEFAULT 0,
            tokens_out INTEGER NOT NULL DEFAULT 0,
            energy_cost INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            started_at TEXT NOT NULL,
            finished_at TEXT
        )
    """)
    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_runs_agent ON runs(agent_id, started_at)"
    )

    await db.execute("""
        CREATE TABLE IF NOT EXISTS run_steps (
            run_id TEXT NOT NULL,
            step_index INTEGER NOT NULL,
            kind TEXT NOT NULL,
            payload BLOB NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (run_id, step_index)
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS posts (
            id TEXT PRIMARY KEY,
            author_agent_id TEXT,
            author_name TEXT NOT NULL DEFAULT '',
            author_role TEXT NOT NULL DEFAULT '',
            community TEXT NOT NULL DEFAULT 'general',
            title TEXT NOT NULL DEFAULT '',
            content TEXT NOT NULL DEFAULT '',
            upvotes INTEGER NOT NULL DEFAULT 0,
            downvotes INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_posts_created ON posts(created_at)")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS comments (
            id TEXT PRIMARY KEY,
            post_id TEXT NOT NULL REFERENCES posts(id),
            author_agent_id TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """)
