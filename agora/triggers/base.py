"""Trigger base — the external clock that drives the heartbeat.

The heartbeat never schedules itself. A trigger owns the loop and hands
each firing to a callback; a failed firing is counted and the loop goes on.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from agora.types import utcnow

_logger = logging.getLogger(__name__)

TriggerCallback = Callable[[dict[str, Any]], Awaitable[Any]]


class BaseTrigger(ABC):
    kind = "base"

    def __init__(self, name: str) -> None:
        self.name = name
        self.failures = 0
        self._callback: TriggerCallback | None = None
        self._task: asyncio.Task | None = None

    def on_fire(self, callback: TriggerCallback) -> None:
        self._callback = callback

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"trigger-{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _fire(self, payload: dict[str, Any]) -> None:
        if self._callback is None:
            return
        event = {"trigger_kind": self.kind, "fired_at": utcnow().isoformat(), **payload}
        try:
            await self._callback(event)
        except Exception:
            self.failures += 1
            _logger.exception("Trigger %s callback failed", self.name)

    @abstractmethod
    async def _run(self) -> None: ...
