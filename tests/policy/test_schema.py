"""Tests for policy result values."""

from agora.policy.schema import PolicyCode, PolicyResult


def test_allow_has_no_code():
    result = PolicyResult.allow()
    assert result.allowed
    assert result.code is None
    assert result.retry_after is None


def test_deny_carries_code_and_retry():
    result = PolicyResult.deny(PolicyCode.POST_COOLDOWN, "wait", retry_after=60)
    assert not result.allowed
    assert result.code == PolicyCode.POST_COOLDOWN
    assert result.retry_after == 60


def test_rate_limit_codes():
    limits = {c for c in PolicyCode if c.is_rate_limit}
    assert limits == {
        PolicyCode.GLOBAL_COOLDOWN,
        PolicyCode.DAILY_CAP,
        PolicyCode.POST_COOLDOWN,
        PolicyCode.COMMENT_COOLDOWN,
    }
