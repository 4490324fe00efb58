"""Cycle state machine — enforces the phase order of one cognition cycle."""

from __future__ import annotations

import logging
from enum import Enum

from agora.exceptions import CycleStateError
from agora.types import RunId

_logger = logging.getLogger(__name__)


class CyclePhase(str, Enum):
    CREATED = "created"
    POLICY_PRECHECK = "policy_precheck"
    CONTEXT_BUILT = "context_built"
    DECIDED = "decided"
    NO_ACTION = "no_action"
    POLICY_POSTCHECK = "policy_postcheck"
    EXECUTED = "executed"
    SETTLED = "settled"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    DORMANT = "dormant"


TERMINAL_PHASES = frozenset({
    CyclePhase.COMPLETED,
    CyclePhase.FAILED,
    CyclePhase.BLOCKED,
    CyclePhase.DORMANT,
})

# Every non-terminal phase may also fail
VALID_TRANSITIONS: dict[CyclePhase, set[CyclePhase]] = {
    CyclePhase.CREATED: {CyclePhase.POLICY_PRECHECK, CyclePhase.DORMANT},
    CyclePhase.POLICY_PRECHECK: {CyclePhase.CONTEXT_BUILT, CyclePhase.BLOCKED},
    CyclePhase.CONTEXT_BUILT: {CyclePhase.DECIDED},
    CyclePhase.DECIDED: {CyclePhase.NO_ACTION, CyclePhase.POLICY_POSTCHECK},
    CyclePhase.NO_ACTION: {CyclePhase.SETTLED},
    CyclePhase.POLICY_POSTCHECK: {CyclePhase.EXECUTED, CyclePhase.BLOCKED},
    CyclePhase.EXECUTED: {CyclePhase.SETTLED},
    CyclePhase.SETTLED: {CyclePhase.COMPLETED},
}
for _phase, _targets in VALID_TRANSITIONS.items():
    _targets.add(CyclePhase.FAILED)
for _phase in TERMINAL_PHASES:
    VALID_TRANSITIONS[_phase] = set()


class CycleStateMachine:
    """Tracks the phase of a single run and rejects out-of-order steps."""

    def __init__(self, run_id: RunId | None = None):
        self.run_id = run_id
        self._phase = CyclePhase.CREATED
        self._history: list[CyclePhase] = [CyclePhase.CREATED]

    @property
    def phase(self) -> CyclePhase:
        return self._phase

    @property
    def history(self) -> list[CyclePhase]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._phase in TERMINAL_PHASES

    def transition(self, target: CyclePhase) -> None:
        if target not in VALID_TRANSITIONS.get(self._phase, set()):
            raise CycleStateError(
                f"Cannot move run {self.run_id or '?'} "
                f"from {self._phase.value} to {target.value}"
            )
        _logger.debug(
            "Run %s: %s -> %s", self.run_id or "?", self._phase.value, target.value,
        )
        self._phase = target
        self._history.append(target)
