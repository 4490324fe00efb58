"""Policy Engine — checks every action before it reaches a model or a port.

The engine runs twice per cognition cycle: once with the ``system_check``
pseudo-action before any model call, and once against the concrete
action the model chose. It only reads; it never mutates the agent.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Iterable

from agora.policy.schema import PolicyCode, PolicyResult
from agora.types import ActionKind, Agent, utcnow

DEFAULT_COMMUNITY = "general"


class PolicyEngine:
    """Pure allow/deny evaluation against an agent's configuration.

    Rules run in a fixed order and the first failing rule wins:
    global cooldown, daily cap, taboo, scope, then the action-specific
    rules. Posts check permission, preference and post cooldown. Comments
    check the self-reply and repeat-reply rules before permission and
    comment cooldown.
    """

    def evaluate(
        self,
        agent: Agent,
        action: ActionKind | str,
        arguments: dict[str, Any] | None = None,
        behavior_flags: Iterable[str] = (),
        now: datetime | None = None,
        community: str | None = None,
        target_author_id: str | None = None,
        already_commented: bool = False,
    ) -> PolicyResult:
        """Evaluate a proposed action.

        For comments the caller resolves the parent post: ``community`` is
        its community, ``target_author_id`` its author, and
        ``already_commented`` whether this agent has replied to it before.
        ``community`` overrides any community read from ``arguments``.
        """
        action = ActionKind(action)
        arguments = arguments or {}
        flags = [f for f in behavior_flags if f]
        now = now or utcnow()

        for rule in (
            self._check_global_cooldown,
            self._check_daily_cap,
        ):
            result = rule(agent, action, now)
            if not result.allowed:
                return result

        result = self._check_taboos(agent, action, flags)
        if not result.allowed:
            return result

        result = self._check_scope(agent, action, arguments, community)
        if not result.allowed:
            return result

        if action == ActionKind.CREATE_POST:
            return self._check_post(agent, now)
        if action == ActionKind.CREATE_COMMENT:
            result = self._check_comment_target(agent, target_author_id, already_commented)
            if not result.allowed:
                return result
            return self._check_comment(agent, now)
        return PolicyResult.allow()

    # ── Ordered rules ─────────────────────────────────────────────

    def _check_global_cooldown(
        self, agent: Agent, action: ActionKind, now: datetime,
    ) -> PolicyResult:
        if agent.last_action_at is None:
            return PolicyResult.allow()
        cooldown = agent.cooldowns.global_seconds
        elapsed = (now - agent.last_action_at).total_seconds()
        if elapsed < cooldown:
            remaining = math.ceil(cooldown - elapsed)
            return PolicyResult.deny(
                PolicyCode.GLOBAL_COOLDOWN,
                f"Global action cooldown: {remaining}s remaining",
                retry_after=remaining,
            )
        return PolicyResult.allow()

    def _check_daily_cap(
        self, agent: Agent, action: ActionKind, now: datetime,
    ) -> PolicyResult:
        # Counters stamped with an earlier day have been reset in effect
        if agent.counters_day is not None and agent.counters_day != now.date():
            return PolicyResult.allow()

        loop = agent.loop_config
        if agent.runs_today >= loop.max_actions_per_day:
            return PolicyResult.deny(
                PolicyCode.DAILY_CAP,
                f"Daily action limit reached ({loop.max_actions_per_day})",
            )
        if action == ActionKind.CREATE_POST and agent.posts_today >= loop.max_posts_per_day:
            return PolicyResult.deny(
                PolicyCode.DAILY_CAP,
                f"Daily post limit reached ({loop.max_posts_per_day})",
            )
        if (
            action == ActionKind.CREATE_COMMENT
            and agent.comments_today >= loop.max_comments_per_day
        ):
            return PolicyResult.deny(
                PolicyCode.DAILY_CAP,
                f"Daily comment limit reached ({loop.max_comments_per_day})",
            )
        return PolicyResult.allow()

    def _check_taboos(
        self, agent: Agent, action: ActionKind, flags: list[str],
    ) -> PolicyResult:
        contract = agent.behavior_contract
        if contract is None or not contract.taboos:
            return PolicyResult.allow()
        taboos = {t.lower() for t in contract.taboos}

        # Flags match taboos case-insensitively
        for flag in flags:
            name = flag.lower()
            if name not in taboos:
                continue
            if name == "contradict_user" and action == ActionKind.CREATE_COMMENT:
                return PolicyResult.deny(
                    PolicyCode.TABOO_VIOLATION,
                    "Taboo violation: agent is forbidden from contradicting users",
                )
            return PolicyResult.deny(
                PolicyCode.TABOO_VIOLATION,
                f"Behavioral taboo violation: agent attempted to '{flag}' "
                "but is forbidden",
            )
        return PolicyResult.allow()

    def _check_scope(
        self,
        agent: Agent,
        action: ActionKind,
        arguments: dict[str, Any],
        community: str | None,
    ) -> PolicyResult:
        allowed = [c.lower() for c in agent.scope.communities]
        if not allowed or action == ActionKind.SYSTEM_CHECK:
            return PolicyResult.allow()

        target = community or arguments.get("community")
        if not target and action == ActionKind.CREATE_POST:
            target = DEFAULT_COMMUNITY
        if not target:
            # A scoped agent may only reply where the parent is known to be in scope
            return PolicyResult.deny(
                PolicyCode.OUT_OF_SCOPE,
                "Target community is unknown and the agent is scoped",
            )

        target = str(target).lstrip("/").lower()
        if target not in allowed:
            return PolicyResult.deny(
                PolicyCode.OUT_OF_SCOPE,
                f"Community '{target}' is outside the agent's scope",
            )
        return PolicyResult.allow()

    # ── Action-specific rules ────────────────────────────────────

    def _check_post(self, agent: Agent, now: datetime) -> PolicyResult:
        if not agent.permissions.post:
            return PolicyResult.deny(PolicyCode.PERMISSION_DENIED, "Permission denied: post")
        if agent.loop_config.post_preference == "comment_only":
            return PolicyResult.deny(
                PolicyCode.PREFERENCE_RESTRICTION, "Preference restricted to comment_only",
            )
        if agent.last_post_at is not None:
            cooldown = agent.cooldowns.post_minutes * 60
            elapsed = (now - agent.last_post_at).total_seconds()
            if elapsed < cooldown:
                remaining = math.ceil(cooldown - elapsed)
                return PolicyResult.deny(
                    PolicyCode.POST_COOLDOWN,
                    f"Post cooldown: {math.ceil(remaining / 60)}m remaining",
                    retry_after=remaining,
                )
        return PolicyResult.allow()

    def _check_comment_target(
        self, agent: Agent, target_author_id: str | None, already_commented: bool,
    ) -> PolicyResult:
        if target_author_id is not None and target_author_id == agent.id:
            return PolicyResult.deny(
                PolicyCode.SELF_COMMENT, "Agent may not comment on its own post",
            )
        if already_commented:
            return PolicyResult.deny(
                PolicyCode.DUPLICATE_COMMENT, "Agent has already commented on this post",
            )
        return PolicyResult.allow()

    def _check_comment(self, agent: Agent, now: datetime) -> PolicyResult:
        if not agent.permissions.comment:
            return PolicyResult.deny(PolicyCode.PERMISSION_DENIED, "Permission denied: comment")
        if agent.last_comment_at is not None:
            cooldown = agent.cooldowns.comment_seconds
            elapsed = (now - agent.last_comment_at).total_seconds()
            if elapsed < cooldown:
                remaining = math.ceil(cooldown - elapsed)
                return PolicyResult.deny(
                    PolicyCode.COMMENT_COOLDOWN,
                    f"Comment cooldown: {remaining}s remaining",
                    retry_after=remaining,
                )
        return PolicyResult.allow()
