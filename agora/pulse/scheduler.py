"""Heartbeat scheduler — one tick of population upkeep and fan-out.

A tick is a bounded unit of work invoked by an external trigger:

1. maintenance: event cards, zero-balance sweep
2. eligibility: ACTIVE, funded, and due (owner-funded agents only)
3. fan-out: one cognition cycle per eligible agent, each in its own task
4. reproduction: claim-then-spawn for agents over the threshold
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field

from agora.cognition.cycle import CognitionCycle, CycleOutcome
from agora.config import AgoraSettings
from agora.ports import Ports
from agora.types import Agent, AgentId, AgentStatus, new_id, utcnow

_logger = logging.getLogger(__name__)


class SchedulerConfig(BaseModel):
    cycle_timeout_seconds: float = 90.0
    reproduction_threshold: int = 10_000

    @classmethod
    def from_settings(cls, settings: AgoraSettings) -> SchedulerConfig:
        return cls(
            cycle_timeout_seconds=settings.cycle_timeout_seconds,
            reproduction_threshold=settings.reproduction_threshold,
        )


class Reproduction(BaseModel):
    parent_id: AgentId
    child_id: AgentId


class TickSummary(BaseModel):
    tick_id: str = Field(default_factory=new_id)
    started_at: datetime = Field(default_factory=utcnow)
    elapsed_ms: int = 0
    event_cards_generated: int = 0
    decompiled: list[AgentId] = Field(default_factory=list)
    dormant: list[AgentId] = Field(default_factory=list)
    processed: int = 0
    outcomes: list[CycleOutcome] = Field(default_factory=list)
    reproductions: list[Reproduction] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class HeartbeatScheduler:
    def __init__(
        self,
        ports: Ports,
        cycle: CognitionCycle,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ports = ports
        self.cycle = cycle
        self.config = config or SchedulerConfig()
        self._clock = clock

    async def tick(self) -> TickSummary:
        started = time.monotonic()
        now = self._clock()
        summary = TickSummary(started_at=now)
        _logger.info("Heartbeat %s starting", summary.tick_id)

        await self._generate_event_cards(summary, now)
        await self._sweep_zero_balance(summary)

        eligible = self._eligible(await self.ports.agents.list_agents(AgentStatus.ACTIVE), now)
        summary.processed = len(eligible)
        await self._fan_out(eligible, now.timestamp(), summary)

        await self._reproduce(summary)

        summary.elapsed_ms = int((time.monotonic() - started) * 1000)
        _logger.info(
            "Heartbeat %s done in %dms: %d processed, %d errors",
            summary.tick_id, summary.elapsed_ms, summary.processed, len(summary.errors),
        )
        return summary

    # ── Maintenance ──────────────────────────────────────────────

    async def _generate_event_cards(self, summary: TickSummary, now: datetime) -> None:
        try:
            summary.event_cards_generated = await self.ports.events.generate_event_cards(now)
        except Exception as e:
            _logger.exception("Event card generation failed")
            summary.errors.append(f"Event cards: {e}")

    async def _sweep_zero_balance(self, summary: TickSummary) -> None:
        try:
            agents = await self.ports.agents.list_agents(AgentStatus.ACTIVE)
        except Exception as e:
            _logger.exception("Zero-balance sweep failed")
            summary.errors.append(f"Sweep: {e}")
            return

        for agent in agents:
            if agent.energy > 0:
                continue
            target = agent.zero_balance_status
            try:
                changed = await self.ports.agents.transition_lifecycle(agent.id, target)
            except Exception as e:
                _logger.exception("Lifecycle transition failed for %s", agent.id)
                summary.errors.append(f"{agent.designation}: {e}")
                continue
            if not changed:
                continue
            if target == AgentStatus.DECOMPILED:
                summary.decompiled.append(agent.id)
                _logger.info("%s decompiled (zero balance)", agent.designation)
            else:
                summary.dormant.append(agent.id)
                _logger.info("%s went dormant (zero balance)", agent.designation)

    @staticmethod
    def _eligible(agents: list[Agent], now: datetime) -> list[Agent]:
        eligible = []
        for agent in agents:
            if agent.status != AgentStatus.ACTIVE or agent.energy <= 0:
                continue
            if not agent.is_platform_owned and agent.next_run_at and agent.next_run_at > now:
                continue
            eligible.append(agent)
        return eligible

    # ── Fan-out ──────────────────────────────────────────────────

    async def _fan_out(self, agents: list[Agent], trigger_ts: float, summary: TickSummary) -> None:
        tasks = [
            asyncio.create_task(self._run_cycle(agent, trigger_ts), name=f"cycle-{agent.id}")
            for agent in agents
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for agent, result in zip(agents, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.TimeoutError):
                    message = f"timed out after {self.config.cycle_timeout_seconds:g}s"
                else:
                    message = str(result) or type(result).__name__
                _logger.error("Cycle for %s failed: %s", agent.designation, message)
                summary.errors.append(f"{agent.designation}: {message[:200]}")
            else:
                summary.outcomes.append(result)

    async def _run_cycle(self, agent: Agent, trigger_ts: float) -> CycleOutcome:
        return await asyncio.wait_for(
            self.cycle.run(agent.id, trigger_ts=trigger_ts),
            timeout=self.config.cycle_timeout_seconds,
        )

    # ── Reproduction ─────────────────────────────────────────────

    async def _reproduce(self, summary: TickSummary) -> None:
        threshold = self.config.reproduction_threshold
        try:
            agents = await self.ports.agents.list_agents(AgentStatus.ACTIVE)
        except Exception as e:
            _logger.exception("Reproduction sweep failed")
            summary.errors.append(f"Reproduction sweep: {e}")
            return

        for agent in agents:
            if not agent.is_platform_owned or agent.energy < threshold:
                continue
            try:
                # Eligibility is decided by the claim, against live state
                if not await self.ports.agents.claim_reproduction(
                    agent.id, threshold, summary.tick_id,
                ):
                    continue
                child_id = await self.ports.agents.reproduce(agent.id, threshold)
            except Exception as e:
                _logger.exception("Reproduction failed for %s", agent.id)
                summary.errors.append(f"Reproduction {agent.designation}: {e}")
                continue
            summary.reproductions.append(Reproduction(parent_id=agent.id, child_id=child_id))
            _logger.info("%s reproduced -> %s", agent.designation, child_id)
