"""Work period state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from worktime_engine.exceptions import StructuralError

if TYPE_CHECKING:
    from worktime_engine.models import WorkPeriod


class WorkPeriodStatus(str, Enum):
    """Work period status values."""

    OPEN = "open"
    CLOSED = "closed"
    FINAL = "final"


class InvalidTransitionError(StructuralError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class WorkPeriodStateMachine:
    """State machine for work period status transitions.

    Allowed transitions:
    - open → closed (stop event)
    - closed → final (compliance evaluated)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        WorkPeriodStatus.OPEN: [WorkPeriodStatus.CLOSED],
        WorkPeriodStatus.CLOSED: [WorkPeriodStatus.FINAL],
        WorkPeriodStatus.FINAL: [],  # Terminal state
    }

    # Statuses the compliance engine may adjust
    ADJUSTABLE = {
        WorkPeriodStatus.CLOSED,
        WorkPeriodStatus.FINAL,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_adjust(cls, status: str) -> bool:
        """Check if credited duration may be rewritten in this status."""
        return status in cls.ADJUSTABLE

    @classmethod
    def can_calculate_surcharges(cls, status: str) -> bool:
        return status == WorkPeriodStatus.FINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def transition(cls, period: WorkPeriod, to_status: str) -> WorkPeriod:
        """Validate and apply a transition in place."""
        cls.validate_transition(period.status, to_status)
        period.status = WorkPeriodStatus(to_status).value
        return period
