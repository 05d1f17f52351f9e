"""Tests for work period state machine."""

import pytest

from worktime_engine.exceptions import StructuralError
from worktime_engine.models import WorkPeriod
from worktime_engine.services.state_machine import (
    InvalidTransitionError,
    WorkPeriodStateMachine,
    WorkPeriodStatus,
)


class TestWorkPeriodStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # open → closed
        assert WorkPeriodStateMachine.can_transition("open", "closed") is True

        # closed → final
        assert WorkPeriodStateMachine.can_transition("closed", "final") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip closed
        assert WorkPeriodStateMachine.can_transition("open", "final") is False

        # Can't go backwards
        assert WorkPeriodStateMachine.can_transition("closed", "open") is False
        assert WorkPeriodStateMachine.can_transition("final", "closed") is False

        # Final is terminal
        assert WorkPeriodStateMachine.can_transition("final", "open") is False

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            WorkPeriodStateMachine.validate_transition("open", "final")

        assert exc_info.value.from_status == "open"
        assert exc_info.value.to_status == "final"
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert isinstance(exc_info.value, StructuralError)

    def test_can_adjust(self):
        """Only closed and final periods may have their credit rewritten."""
        assert WorkPeriodStateMachine.can_adjust("open") is False
        assert WorkPeriodStateMachine.can_adjust("closed") is True
        assert WorkPeriodStateMachine.can_adjust("final") is True

    def test_can_calculate_surcharges(self):
        assert WorkPeriodStateMachine.can_calculate_surcharges("final") is True
        assert WorkPeriodStateMachine.can_calculate_surcharges("closed") is False
        assert WorkPeriodStateMachine.can_calculate_surcharges("open") is False

    def test_get_next_statuses(self):
        """Test getting valid next statuses."""
        assert WorkPeriodStateMachine.get_next_statuses("open") == [WorkPeriodStatus.CLOSED]
        assert WorkPeriodStateMachine.get_next_statuses("closed") == [WorkPeriodStatus.FINAL]
        assert WorkPeriodStateMachine.get_next_statuses("final") == []

    def test_transition_applies_in_place(self):
        period = WorkPeriod(status="open")

        WorkPeriodStateMachine.transition(period, WorkPeriodStatus.CLOSED)

        assert period.status == "closed"

    def test_transition_rejects_invalid(self):
        period = WorkPeriod(status="final")

        with pytest.raises(InvalidTransitionError):
            WorkPeriodStateMachine.transition(period, WorkPeriodStatus.OPEN)

        assert period.status == "final"
