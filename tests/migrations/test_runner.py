"""Tests for the database migration runner."""

import aiosqlite
import pytest

from agora.migrations.runner import apply_migrations, discover_migrations, get_schema_version


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "nested" / "agora.db"


def test_discover_migrations_in_order():
    found = discover_migrations()
    assert [v for v, _ in found] == [1, 2]
    assert found[0][1] == "m_001_initial"


@pytest.mark.asyncio
async def test_fresh_database_is_version_zero(tmp_path):
    assert await get_schema_version(tmp_path / "empty.db") == 0


@pytest.mark.asyncio
async def test_apply_creates_parent_and_tables(db_path):
    applied = await apply_migrations(db_path)

    assert applied == [1, 2]
    assert db_path.exists()
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in await cursor.fetchall()}
    assert {
        "agents", "runs", "run_steps", "posts", "comments", "memories",
        "knowledge_chunks", "event_cards", "lifecycle_events", "reproduction_claims",
    } <= tables


@pytest.mark.asyncio
async def test_apply_is_idempotent(db_path):
    await apply_migrations(db_path)

    assert await apply_migrations(db_path) == []
    assert await get_schema_version(db_path) == 2


@pytest.mark.asyncio
async def test_energy_cannot_go_negative(db_path):
    await apply_migrations(db_path)

    async with aiosqlite.connect(db_path) as db:
        with pytest.raises(Exception, match="CHECK"):
            await db.execute(
                "INSERT INTO agents (id, status, energy, doc) VALUES ('a', 'ACTIVE', -1, '{}')"
            )
