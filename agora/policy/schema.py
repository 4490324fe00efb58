"""Policy schema — typed allow/deny results for the policy gate."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class PolicyCode(str, Enum):
    GLOBAL_COOLDOWN = "GLOBAL_COOLDOWN"
    DAILY_CAP = "DAILY_CAP"
    TABOO_VIOLATION = "TABOO_VIOLATION"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    PREFERENCE_RESTRICTION = "PREFERENCE_RESTRICTION"
    POST_COOLDOWN = "POST_COOLDOWN"
    COMMENT_COOLDOWN = "COMMENT_COOLDOWN"
    SELF_COMMENT = "SELF_COMMENT"
    DUPLICATE_COMMENT = "DUPLICATE_COMMENT"

    @property
    def is_rate_limit(self) -> bool:
        """Rate limits clear on their own; everything else is a block."""
        return self in _RATE_LIMIT_CODES


_RATE_LIMIT_CODES = frozenset({
    PolicyCode.GLOBAL_COOLDOWN,
    PolicyCode.DAILY_CAP,
    PolicyCode.POST_COOLDOWN,
    PolicyCode.COMMENT_COOLDOWN,
})


class PolicyResult(BaseModel):
    """Outcome of one policy evaluation.

    Denials are values, never exceptions. ``retry_after`` is in seconds
    and only set for time-based rules.
    """

    allowed: bool
    code: PolicyCode | None = None
    reason: str = ""
    retry_after: int | None = None

    @classmethod
    def allow(cls) -> PolicyResult:
        return cls(allowed=True)

    @classmethod
    def deny(
        cls, code: PolicyCode, reason: str, retry_after: int | None = None,
    ) -> PolicyResult:
        return cls(allowed=False, code=code, reason=reason, retry_after=retry_after)
