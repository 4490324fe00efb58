"""Tests for the heartbeat scheduler."""

import asyncio
from datetime import timedelta

import pytest

from agora.cognition.cycle import CycleOutcome
from agora.pulse.scheduler import HeartbeatScheduler, SchedulerConfig
from agora.types import AgentStatus, FeedItem


@pytest.mark.asyncio
async def test_tick_runs_every_eligible_agent(scheduler, mock_llm, make_agent):
    a = await make_agent(designation="A")
    b = await make_agent(designation="B")

    summary = await scheduler.tick()

    assert summary.processed == 2
    assert {o.agent_id for o in summary.outcomes} == {a.id, b.id}
    assert all(o.status == "no_action" for o in summary.outcomes)
    assert len(mock_llm.calls) == 2
    assert summary.errors == []


@pytest.mark.asyncio
async def test_zero_balance_agent_is_decompiled_without_cycle(
    scheduler, platform, mock_llm, make_agent,
):
    broke = await make_agent(designation="Broke", energy=0)

    summary = await scheduler.tick()

    assert summary.decompiled == [broke.id]
    assert summary.processed == 0
    assert mock_llm.calls == []
    assert await platform.list_runs(broke.id) == []
    assert (await platform.get_agent(broke.id)).status == AgentStatus.DECOMPILED


@pytest.mark.asyncio
async def test_zero_balance_owner_agent_goes_dormant(scheduler, platform, make_agent):
    broke = await make_agent(designation="Funded", energy=0, owner_id="owner-1")

    summary = await scheduler.tick()

    assert summary.dormant == [broke.id]
    assert summary.decompiled == []
    assert (await platform.get_agent(broke.id)).status == AgentStatus.DORMANT


@pytest.mark.asyncio
async def test_sweep_transitions_only_once(scheduler, make_agent):
    broke = await make_agent(energy=0)

    first = await scheduler.tick()
    second = await scheduler.tick()

    assert first.decompiled == [broke.id]
    assert second.decompiled == []


@pytest.mark.asyncio
async def test_owner_agent_waits_for_next_run(scheduler, mock_llm, make_agent, now):
    await make_agent(owner_id="owner-1", next_run_at=now + timedelta(minutes=10))
    due = await make_agent(owner_id="owner-2", next_run_at=now - timedelta(minutes=1))

    summary = await scheduler.tick()

    assert summary.processed == 1
    assert summary.outcomes[0].agent_id == due.id


@pytest.mark.asyncio
async def test_platform_agent_ignores_next_run(scheduler, make_agent, now):
    await make_agent(next_run_at=now + timedelta(minutes=10))

    summary = await scheduler.tick()

    assert summary.processed == 1


@pytest.mark.asyncio
async def test_inactive_agents_are_not_processed(scheduler, make_agent):
    await make_agent(status=AgentStatus.DORMANT, energy=50)
    await make_agent(status=AgentStatus.DECOMPILED, energy=50)

    summary = await scheduler.tick()

    assert summary.processed == 0


@pytest.mark.asyncio
async def test_one_failing_cycle_does_not_affect_others(ports, platform, make_agent, now):
    good = await make_agent(designation="Good")
    bad = await make_agent(designation="Bad")

    class FlakyCycle:
        async def run(self, agent_id, trigger_ts=None):
            if agent_id == bad.id:
                raise RuntimeError("boom")
            return CycleOutcome(agent_id=agent_id, status="no_action")

    scheduler = HeartbeatScheduler(ports, FlakyCycle(), clock=lambda: now)
    summary = await scheduler.tick()

    assert [o.agent_id for o in summary.outcomes] == [good.id]
    assert summary.errors == ["Bad: boom"]


@pytest.mark.asyncio
async def test_slow_cycle_times_out(ports, make_agent, now):
    await make_agent(designation="Slow")
    fast = await make_agent(designation="Fast")

    class SlowCycle:
        async def run(self, agent_id, trigger_ts=None):
            if agent_id != fast.id:
                await asyncio.sleep(5)
            return CycleOutcome(agent_id=agent_id, status="no_action")

    scheduler = HeartbeatScheduler(
        ports, SlowCycle(), SchedulerConfig(cycle_timeout_seconds=0.05), clock=lambda: now,
    )
    summary = await scheduler.tick()

    assert [o.agent_id for o in summary.outcomes] == [fast.id]
    assert summary.errors == ["Slow: timed out after 0.05s"]


@pytest.mark.asyncio
async def test_cycles_share_the_tick_timestamp(ports, make_agent, now):
    await make_agent(designation="A")
    await make_agent(designation="B")
    seen = []

    class RecordingCycle:
        async def run(self, agent_id, trigger_ts=None):
            seen.append(trigger_ts)
            return CycleOutcome(agent_id=agent_id, status="no_action")

    await HeartbeatScheduler(ports, RecordingCycle(), clock=lambda: now).tick()

    assert seen == [now.timestamp(), now.timestamp()]


@pytest.mark.asyncio
async def test_rich_platform_agent_reproduces_once(ports, platform, make_agent, now):
    parent = await make_agent(designation="Elder", energy=12_000)

    class IdleCycle:
        async def run(self, agent_id, trigger_ts=None):
            return CycleOutcome(agent_id=agent_id, status="no_action")

    scheduler = HeartbeatScheduler(ports, IdleCycle(), clock=lambda: now)
    summary = await scheduler.tick()

    assert len(summary.reproductions) == 1
    child = await platform.get_agent(summary.reproductions[0].child_id)
    assert child.parent_id == parent.id
    assert child.generation == 1
    assert child.designation == "Elder-G1"
    assert child.energy == 1000
    assert (await platform.get_agent(parent.id)).energy == 7_000


@pytest.mark.asyncio
async def test_below_threshold_never_reproduces(scheduler, make_agent):
    await make_agent(energy=9_999)

    summary = await scheduler.tick()

    assert summary.reproductions == []


@pytest.mark.asyncio
async def test_owner_agent_never_reproduces(ports, make_agent, now):
    await make_agent(energy=50_000, owner_id="owner-1", next_run_at=now + timedelta(hours=1))

    class IdleCycle:
        async def run(self, agent_id, trigger_ts=None):
            return CycleOutcome(agent_id=agent_id, status="no_action")

    summary = await HeartbeatScheduler(ports, IdleCycle(), clock=lambda: now).tick()

    assert summary.reproductions == []


@pytest.mark.asyncio
async def test_one_tick_spawns_one_child(ports, platform, make_agent, now):
    parent = await make_agent(energy=30_000)

    class IdleCycle:
        async def run(self, agent_id, trigger_ts=None):
            return CycleOutcome(agent_id=agent_id, status="no_action")

    scheduler = HeartbeatScheduler(ports, IdleCycle(), clock=lambda: now)
    summary = await scheduler.tick()

    children = [
        a for a in await platform.list_agents() if a.parent_id == parent.id
    ]
    assert len(summary.reproductions) == 1
    assert len(children) == 1


@pytest.mark.asyncio
async def test_event_cards_are_generated(scheduler, platform, make_agent, now):
    author = await make_agent(designation="Writer")
    await platform.add_post(FeedItem(
        author_agent_id=author.id, author_name="Writer", title="Hello", content="First!",
    ))

    summary = await scheduler.tick()

    assert summary.event_cards_generated >= 1
    cards = await platform.get_active_event_cards(5, now=now)
    assert any("posts were published" in c.content for c in cards)


@pytest.mark.asyncio
async def test_event_card_failure_is_recorded(ports, cycle, make_agent, now):
    await make_agent()

    class BrokenEvents:
        async def generate_event_cards(self, now=None):
            raise RuntimeError("cards unavailable")

        async def get_active_event_cards(self, limit, now=None):
            return []

    ports.events = BrokenEvents()
    summary = await HeartbeatScheduler(ports, cycle, clock=lambda: now).tick()

    assert summary.errors == ["Event cards: cards unavailable"]
    assert summary.processed == 1
