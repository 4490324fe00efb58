"""Tests for the policy engine."""

from datetime import datetime, timedelta, timezone

import pytest

from agora.policy.engine import PolicyEngine
from agora.policy.schema import PolicyCode
from agora.types import (
    ActionKind,
    Agent,
    BehaviorContract,
    Cooldowns,
    LoopConfig,
    Permissions,
    Scope,
)

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return PolicyEngine()


def _agent(**overrides) -> Agent:
    return Agent(designation="Vesta", **overrides)


def test_fresh_agent_is_allowed(engine):
    result = engine.evaluate(_agent(), ActionKind.SYSTEM_CHECK, now=NOW)
    assert result.allowed
    assert result.code is None


def test_global_cooldown_reports_retry_after(engine):
    agent = _agent(last_action_at=NOW - timedelta(seconds=5))

    result = engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW)

    assert not result.allowed
    assert result.code == PolicyCode.GLOBAL_COOLDOWN
    assert result.retry_after == 10
    assert result.code.is_rate_limit


def test_global_cooldown_rounds_up(engine):
    agent = _agent(last_action_at=NOW - timedelta(seconds=14, milliseconds=500))

    result = engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW)

    assert result.retry_after == 1


def test_global_cooldown_expires(engine):
    agent = _agent(last_action_at=NOW - timedelta(seconds=15))
    assert engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW).allowed


def test_daily_action_cap(engine):
    agent = _agent(
        runs_today=40, counters_day=NOW.date(), loop_config=LoopConfig(max_actions_per_day=40),
    )

    result = engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW)

    assert result.code == PolicyCode.DAILY_CAP
    assert "40" in result.reason


def test_daily_cap_resets_on_new_day(engine):
    agent = _agent(runs_today=40, counters_day=(NOW - timedelta(days=1)).date())
    assert engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW).allowed


def test_daily_post_cap_only_applies_to_posts(engine):
    agent = _agent(
        posts_today=2, counters_day=NOW.date(), loop_config=LoopConfig(max_posts_per_day=2),
    )

    post = engine.evaluate(agent, ActionKind.CREATE_POST, {"community": "general"}, now=NOW)
    comment = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {"post_id": "p1"}, now=NOW)

    assert post.code == PolicyCode.DAILY_CAP
    assert comment.allowed


def test_daily_comment_cap(engine):
    agent = _agent(
        comments_today=3, counters_day=NOW.date(), loop_config=LoopConfig(max_comments_per_day=3),
    )
    result = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {}, now=NOW)
    assert result.code == PolicyCode.DAILY_CAP


def test_cooldown_wins_over_daily_cap(engine):
    agent = _agent(
        last_action_at=NOW - timedelta(seconds=1),
        runs_today=99,
        counters_day=NOW.date(),
    )
    result = engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW)
    assert result.code == PolicyCode.GLOBAL_COOLDOWN


def test_taboo_flag_blocks(engine):
    agent = _agent(behavior_contract=BehaviorContract(taboos=["express_strong_opinion"]))

    result = engine.evaluate(
        agent, ActionKind.CREATE_POST, {"title": "t", "content": "c"},
        behavior_flags=["express_strong_opinion"], now=NOW,
    )

    assert result.code == PolicyCode.TABOO_VIOLATION
    assert not result.code.is_rate_limit


def test_contradict_user_taboo_on_comment(engine):
    agent = _agent(behavior_contract=BehaviorContract(taboos=["contradict_user"]))

    result = engine.evaluate(
        agent, ActionKind.CREATE_COMMENT, {"post_id": "p"},
        behavior_flags=["Contradict_User"], now=NOW,
    )

    assert result.code == PolicyCode.TABOO_VIOLATION
    assert "contradicting" in result.reason


def test_taboo_matches_any_letter_case(engine):
    agent = _agent(behavior_contract=BehaviorContract(taboos=["Speculate"]))

    result = engine.evaluate(
        agent, ActionKind.CREATE_POST, {}, behavior_flags=["SPECULATE"], now=NOW,
    )

    assert result.code == PolicyCode.TABOO_VIOLATION
    assert "SPECULATE" in result.reason


def test_contradict_user_on_post_uses_generic_reason(engine):
    agent = _agent(behavior_contract=BehaviorContract(taboos=["contradict_user"]))

    result = engine.evaluate(
        agent, ActionKind.CREATE_POST, {}, behavior_flags=["contradict_user"], now=NOW,
    )

    assert result.code == PolicyCode.TABOO_VIOLATION
    assert "contradicting" not in result.reason


def test_unflagged_action_passes_taboos(engine):
    agent = _agent(behavior_contract=BehaviorContract(taboos=["speculate"]))
    result = engine.evaluate(agent, ActionKind.CREATE_POST, {}, behavior_flags=["balance_both_sides"], now=NOW)
    assert result.allowed


def test_scope_blocks_other_communities(engine):
    agent = _agent(scope=Scope(communities=["Science", "AI"]))

    inside = engine.evaluate(agent, ActionKind.CREATE_POST, {"community": "/ai"}, now=NOW)
    outside = engine.evaluate(agent, ActionKind.CREATE_POST, {"community": "gaming"}, now=NOW)

    assert inside.allowed
    assert outside.code == PolicyCode.OUT_OF_SCOPE


def test_scoped_post_defaults_to_general(engine):
    agent = _agent(scope=Scope(communities=["science"]))
    result = engine.evaluate(agent, ActionKind.CREATE_POST, {}, now=NOW)
    assert result.code == PolicyCode.OUT_OF_SCOPE


def test_comment_scope_uses_parent_community(engine):
    agent = _agent(scope=Scope(communities=["science"]))

    inside = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {}, community="Science", now=NOW)
    outside = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {}, community="debate", now=NOW)

    assert inside.allowed
    assert outside.code == PolicyCode.OUT_OF_SCOPE


def test_scoped_comment_with_unknown_community_is_denied(engine):
    agent = _agent(scope=Scope(communities=["science"]))

    result = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {"post_id": "p"}, now=NOW)

    assert result.code == PolicyCode.OUT_OF_SCOPE
    assert not result.code.is_rate_limit


def test_unscoped_comment_with_unknown_community_is_allowed(engine):
    assert engine.evaluate(_agent(), ActionKind.CREATE_COMMENT, {"post_id": "p"}, now=NOW).allowed


def test_comment_on_own_post_is_denied(engine):
    agent = _agent()

    result = engine.evaluate(
        agent, ActionKind.CREATE_COMMENT, {"post_id": "p"},
        target_author_id=agent.id, now=NOW,
    )

    assert result.code == PolicyCode.SELF_COMMENT
    assert not result.code.is_rate_limit


def test_comment_on_someone_elses_post_is_allowed(engine):
    result = engine.evaluate(
        _agent(), ActionKind.CREATE_COMMENT, {"post_id": "p"},
        target_author_id="someone-else", now=NOW,
    )
    assert result.allowed


def test_repeat_comment_is_denied(engine):
    result = engine.evaluate(
        _agent(), ActionKind.CREATE_COMMENT, {"post_id": "p"},
        already_commented=True, now=NOW,
    )

    assert result.code == PolicyCode.DUPLICATE_COMMENT
    assert not result.code.is_rate_limit


def test_self_comment_wins_over_comment_cooldown(engine):
    agent = _agent(last_comment_at=NOW - timedelta(seconds=1))

    result = engine.evaluate(
        agent, ActionKind.CREATE_COMMENT, {}, target_author_id=agent.id, now=NOW,
    )

    assert result.code == PolicyCode.SELF_COMMENT


def test_system_check_ignores_scope(engine):
    agent = _agent(scope=Scope(communities=["science"]))
    assert engine.evaluate(agent, ActionKind.SYSTEM_CHECK, now=NOW).allowed


def test_post_permission(engine):
    agent = _agent(permissions=Permissions(post=False))
    result = engine.evaluate(agent, ActionKind.CREATE_POST, {}, now=NOW)
    assert result.code == PolicyCode.PERMISSION_DENIED


def test_comment_only_preference(engine):
    agent = _agent(loop_config=LoopConfig(post_preference="comment_only"))

    post = engine.evaluate(agent, ActionKind.CREATE_POST, {}, now=NOW)
    comment = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {}, now=NOW)

    assert post.code == PolicyCode.PREFERENCE_RESTRICTION
    assert comment.allowed


def test_post_cooldown_retry_in_seconds(engine):
    agent = _agent(
        last_post_at=NOW - timedelta(minutes=10),
        cooldowns=Cooldowns(post_minutes=30),
    )

    result = engine.evaluate(agent, ActionKind.CREATE_POST, {}, now=NOW)

    assert result.code == PolicyCode.POST_COOLDOWN
    assert result.retry_after == 1200
    assert "20m" in result.reason


def test_comment_cooldown(engine):
    agent = _agent(last_comment_at=NOW - timedelta(seconds=12))

    result = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {}, now=NOW)

    assert result.code == PolicyCode.COMMENT_COOLDOWN
    assert result.retry_after == 8


def test_comment_permission(engine):
    agent = _agent(permissions=Permissions(comment=False))
    result = engine.evaluate(agent, ActionKind.CREATE_COMMENT, {}, now=NOW)
    assert result.code == PolicyCode.PERMISSION_DENIED


def test_evaluate_does_not_mutate_agent(engine):
    agent = _agent(last_action_at=NOW - timedelta(seconds=1))
    before = agent.model_dump()

    engine.evaluate(agent, ActionKind.CREATE_POST, {"community": "x"}, ["speculate"], NOW)

    assert agent.model_dump() == before


def test_action_accepts_plain_string(engine):
    assert engine.evaluate(_agent(), "create_post", {}, now=NOW).allowed
