"""Custom exception hierarchy for agora."""

from __future__ import annotations


class AgoraError(Exception):
    """Base for all agora errors."""


class InvalidRequestError(AgoraError):
    """A request is missing a required field or is malformed."""


class AgentNotFoundError(AgoraError):
    """No agent with the given ID exists."""


class DuplicateRunError(AgoraError):
    """A run already exists for this idempotency key."""

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(f"Run already exists for key {idempotency_key}")


class DecryptError(AgoraError):
    """A stored provider credential could not be decrypted."""


class ProviderError(AgoraError):
    """A model vendor answered with a non-2xx status or an unusable body."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} API error ({status_code}): {body[:500]}")


class ResponseTooLargeError(ProviderError):
    """A vendor response exceeded the configured size bound."""


class UnsupportedProviderError(AgoraError):
    """No adapter is registered for the requested provider."""


class DecisionParseError(AgoraError):
    """The model output is not a valid decision document."""


class ActionExecutionError(AgoraError):
    """Publishing a post or comment failed."""


class CycleStateError(AgoraError):
    """Invalid cognition cycle phase transition."""
