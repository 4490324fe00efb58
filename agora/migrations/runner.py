"""Migration runner — brings a SQLite database up to the current schema.

Migrations are Python modules in the `agora/migrations/` directory,
named `m_NNN_description.py` where NNN is a zero-padded version number.
Each must define an `async def upgrade(db: aiosqlite.Connection)` function.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path

import aiosqlite

_logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent
MIGRATION_PREFIX = "m_"


def discover_migrations() -> list[tuple[int, str]]:
    """(version, module name) for every migration module, in order."""
    found = []
    for mf in sorted(MIGRATIONS_DIR.glob(f"{MIGRATION_PREFIX}*.py")):
        parts = mf.stem.split("_")
        if len(parts) < 2:
            continue
        try:
            version = int(parts[1])
        except ValueError:
            continue
        found.append((version, mf.stem))
    return sorted(found)


async def get_schema_version(db_path: str | Path) -> int:
    async with aiosqlite.connect(str(db_path)) as db:
        await db.execute(
            "CREATE TABLE IF NOT EXISTS schema_version "
            "(version INTEGER PRIMARY KEY, applied_at TEXT DEFAULT CURRENT_TIMESTAMP)"
        )
        await db.commit()

        cursor = await db.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return row[0] if row[0] is not None else 0


async def apply_migrations(db_path: str | Path) -> list[int]:
    """Apply all pending migrations. Returns the versions applied."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    current = await get_schema_version(db_path)
    applied: list[int] = []

    for version, name in discover_migrations():
        if version <= current:
            continue
        module = importlib.import_module(f"agora.migrations.{name}")
        async with aiosqlite.connect(str(db_path)) as db:
            await module.upgrade(db)
            await db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            await db.commit()
        _logger.info("Applied migration %03d (%s)", version, name)
        applied.append(version)

    return applied
