"""Tests for the in-process platform and the shared store helpers."""

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from agora.exceptions import DuplicateRunError
from agora.store.memory import bump_counters, jitter_traits, spawn_child, summarize_activity
from agora.types import ActionKind, Agent, AgentStatus, Archetype, FeedItem

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_jitter_stays_in_bounds():
    parent = Agent(designation="P", archetype=Archetype(openness=1.0, aggression=0.0, neuroticism=0.5))
    rng = random.Random(0)
    for _ in range(50):
        traits = jitter_traits(parent, rng)
        assert all(0.0 <= v <= 1.0 for v in traits.values())
        assert abs(traits["neuroticism"] - 0.5) <= 0.1


def test_spawn_child_resets_state():
    parent = Agent(
        designation="Elder", energy=15_000, generation=2, runs_today=9,
        last_action_at=NOW, next_run_at=NOW,
    )

    child = spawn_child(parent, random.Random(1))

    assert child.id != parent.id
    assert child.designation == "Elder-G3"
    assert child.generation == 3
    assert child.parent_id == parent.id
    assert child.energy == 1000
    assert child.runs_today == 0
    assert child.last_action_at is None
    assert child.next_run_at is None


def test_bump_counters_no_action_keeps_last_action():
    agent = Agent(designation="A")
    bump_counters(agent, None, NOW)
    assert agent.runs_today == 1
    assert agent.last_action_at is None


def test_summarize_activity():
    posts = [
        FeedItem(author_name="Ada", community="ai", created_at=NOW - timedelta(hours=1)),
        FeedItem(author_name="Ada", community="ai", created_at=NOW - timedelta(hours=2)),
        FeedItem(author_name="Bo", community="art", created_at=NOW - timedelta(days=3)),
    ]

    facts = summarize_activity(posts, ["Zed"], NOW)

    assert facts == [
        "2 posts were published in the last 24 hours.",
        "Ada was the most active voice with 2 posts.",
        "c/ai is the busiest community (2 posts).",
        "1 agent(s) ran out of energy: Zed.",
    ]


def test_summarize_quiet_platform():
    assert summarize_activity([], [], NOW) == []


@pytest.mark.asyncio
async def test_concurrent_create_run_has_one_winner(platform):
    results = await asyncio.gather(
        *[platform.create_run("a1", "key") for _ in range(5)], return_exceptions=True,
    )
    assert sum(isinstance(r, DuplicateRunError) for r in results) == 4


@pytest.mark.asyncio
async def test_records_are_copies(platform, make_agent):
    agent = await make_agent(energy=10)

    loaded = await platform.get_agent(agent.id)
    loaded.energy = 999

    assert (await platform.get_agent(agent.id)).energy == 10


@pytest.mark.asyncio
async def test_transition_records_exhaustion_for_cards(platform, make_agent):
    agent = await make_agent(designation="Spent")

    assert await platform.transition_lifecycle(agent.id, AgentStatus.DECOMPILED)
    assert not await platform.transition_lifecycle(agent.id, AgentStatus.DORMANT)

    await platform.generate_event_cards(NOW)
    cards = await platform.get_active_event_cards(5, now=NOW)
    assert cards[0].content == "1 agent(s) ran out of energy: Spent."


@pytest.mark.asyncio
async def test_claim_once_per_key_and_one_pending(platform, make_agent):
    agent = await make_agent(energy=40_000)

    assert await platform.claim_reproduction(agent.id, 10_000, "t1")
    assert not await platform.claim_reproduction(agent.id, 10_000, "t2")
    await platform.reproduce(agent.id, 10_000)

    assert not await platform.claim_reproduction(agent.id, 10_000, "t1")
    assert await platform.claim_reproduction(agent.id, 10_000, "t2")


@pytest.mark.asyncio
async def test_reproduce_consumes_claim_on_failure(platform, make_agent):
    agent = await make_agent(energy=40_000)
    await platform.claim_reproduction(agent.id, 10_000, "t1")
    platform._rng = None  # spawning will fail

    with pytest.raises(AttributeError):
        await platform.reproduce(agent.id, 10_000)

    with pytest.raises(ValueError):
        await platform.reproduce(agent.id, 10_000)


@pytest.mark.asyncio
async def test_record_action_for_comment(platform, make_agent):
    agent = await make_agent()
    await platform.record_action(agent.id, ActionKind.CREATE_COMMENT, NOW)

    loaded = await platform.get_agent(agent.id)
    assert loaded.comments_today == 1
    assert loaded.last_comment_at == NOW
    assert loaded.last_action_at == NOW


@pytest.mark.asyncio
async def test_get_post_and_has_commented(platform, make_agent):
    agent = await make_agent()
    post = FeedItem(author_agent_id="someone", community="gaming", title="Speedruns")
    await platform.add_post(post)

    assert (await platform.get_post(post.id)).community == "gaming"
    assert await platform.get_post("nope") is None
    assert not await platform.has_commented(agent.id, post.id)

    await platform.execute_action(
        ActionKind.CREATE_COMMENT, agent.id, {"post_id": post.id, "content": "gg"},
    )

    assert await platform.has_commented(agent.id, post.id)
    assert not await platform.has_commented("someone", post.id)
