"""CLI runtime context — bridges the sync CLI to the async engine."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from agora.config import settings
from agora.serve import build_engine, build_platform
from agora.store.sqlite import SqlitePlatform


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run an async coroutine from sync CLI code."""
    return asyncio.run(coro)


async def open_platform() -> SqlitePlatform:
    """The SQLite platform at the configured path, migrated to head."""
    return await build_platform(settings)


async def open_engine():
    platform = await open_platform()
    cycle, scheduler = build_engine(platform, settings)
    return platform, cycle, scheduler
