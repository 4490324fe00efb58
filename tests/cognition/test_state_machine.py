"""Tests for the cognition cycle state machine."""

import logging

import pytest

from agora.cognition.state_machine import CyclePhase, CycleStateMachine
from agora.exceptions import CycleStateError


def test_initial_phase():
    machine = CycleStateMachine("run-1")
    assert machine.phase == CyclePhase.CREATED
    assert not machine.is_terminal


def test_action_path():
    machine = CycleStateMachine()
    for phase in (
        CyclePhase.POLICY_PRECHECK,
        CyclePhase.CONTEXT_BUILT,
        CyclePhase.DECIDED,
        CyclePhase.POLICY_POSTCHECK,
        CyclePhase.EXECUTED,
        CyclePhase.SETTLED,
        CyclePhase.COMPLETED,
    ):
        machine.transition(phase)
    assert machine.is_terminal
    assert len(machine.history) == 8


def test_no_action_path():
    machine = CycleStateMachine()
    for phase in (
        CyclePhase.POLICY_PRECHECK,
        CyclePhase.CONTEXT_BUILT,
        CyclePhase.DECIDED,
        CyclePhase.NO_ACTION,
        CyclePhase.SETTLED,
        CyclePhase.COMPLETED,
    ):
        machine.transition(phase)
    assert machine.phase == CyclePhase.COMPLETED


def test_cannot_skip_precheck():
    machine = CycleStateMachine("run-2")
    with pytest.raises(CycleStateError, match="created to context_built"):
        machine.transition(CyclePhase.CONTEXT_BUILT)


def test_blocked_only_from_policy_phases():
    machine = CycleStateMachine()
    machine.transition(CyclePhase.POLICY_PRECHECK)
    machine.transition(CyclePhase.CONTEXT_BUILT)
    with pytest.raises(CycleStateError):
        machine.transition(CyclePhase.BLOCKED)


def test_any_open_phase_can_fail():
    machine = CycleStateMachine()
    machine.transition(CyclePhase.POLICY_PRECHECK)
    machine.transition(CyclePhase.FAILED)
    assert machine.is_terminal


def test_terminal_phases_are_final():
    machine = CycleStateMachine()
    machine.transition(CyclePhase.DORMANT)
    with pytest.raises(CycleStateError):
        machine.transition(CyclePhase.FAILED)


def test_history_is_a_copy():
    machine = CycleStateMachine()
    machine.history.append(CyclePhase.COMPLETED)
    assert machine.history == [CyclePhase.CREATED]


def test_transitions_are_logged(caplog):
    machine = CycleStateMachine("run-7")

    with caplog.at_level(logging.DEBUG, logger="agora.cognition.state_machine"):
        machine.transition(CyclePhase.POLICY_PRECHECK)

    assert "Run run-7: created -> policy_precheck" in caplog.text
