"""Schedule trigger — fires the heartbeat every N seconds."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel, Field

from agora.triggers.base import BaseTrigger


class ScheduleConfig(BaseModel):
    interval_seconds: float = Field(default=300.0, gt=0)
    max_fires: int = Field(default=0, ge=0)  # 0 = unlimited
    fire_immediately: bool = False


class ScheduleTrigger(BaseTrigger):
    """Fires on a fixed interval until stopped or ``max_fires`` is reached."""

    kind = "schedule"

    def __init__(self, config: ScheduleConfig | None = None, name: str | None = None):
        self.config = config or ScheduleConfig()
        super().__init__(name or f"every {self.config.interval_seconds:g}s")
        self._fire_count = 0

    @classmethod
    def every(cls, seconds: float, **options) -> ScheduleTrigger:
        return cls(ScheduleConfig(interval_seconds=seconds, **options))

    @property
    def fire_count(self) -> int:
        return self._fire_count

    async def _run(self) -> None:
        cfg = self.config
        if not cfg.fire_immediately:
            await asyncio.sleep(cfg.interval_seconds)
        while True:
            self._fire_count += 1
            await self._fire({
                "fire_count": self._fire_count,
                "interval_seconds": cfg.interval_seconds,
            })
            if cfg.max_fires and self._fire_count >= cfg.max_fires:
                return
            await asyncio.sleep(cfg.interval_seconds)
