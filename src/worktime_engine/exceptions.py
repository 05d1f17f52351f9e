"""Typed exception hierarchy for the worktime engine.

Every exception carries a stable ``code`` so API handlers and callers can
branch on type and code instead of message text.

    WorktimeError
    +-- FatalError              surfaced for manual intervention, never repaired
    |   +-- IntegrityViolation
    |   +-- ChainConflict
    +-- StructuralError         input rejected, caller must fix and resubmit
    |   +-- OutOfOrderEvent
    |   +-- DanglingOpenPeriod
    |   +-- NoOpenPeriod
    |   +-- EventAlreadySuperseded
    |   +-- InvalidCorrection
    |   +-- PeriodNotFinal
    |   +-- DuplicateCalculation
    |   +-- InvalidPolicyDefinition
    |   +-- ViolationAlreadyAcknowledged
    +-- NotFoundError

Compliance violations are not exceptions: they are recorded as rows and
never block the operation that produced them.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from worktime_engine.calculators.types import ChainVerification


class WorktimeError(Exception):
    """Base class for all engine errors."""

    code: str = "WORKTIME_ERROR"


class FatalError(WorktimeError):
    """Integrity-class failure requiring manual intervention."""

    code = "FATAL"


class StructuralError(WorktimeError):
    """Input rejected synchronously with a specific reason."""

    code = "STRUCTURAL"


class NotFoundError(WorktimeError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


# ============================================================================
# Fatal
# ============================================================================


class IntegrityViolation(FatalError):
    """Recomputed chain digests do not match what is stored."""

    code = "INTEGRITY_VIOLATION"

    def __init__(self, verification: ChainVerification):
        self.verification = verification
        self.employee_id = verification.employee_id
        super().__init__(
            f"Clock event chain for employee {verification.employee_id} failed "
            f"verification with {len(verification.issues)} issue(s)"
        )


class ChainConflict(FatalError):
    """A concurrent append advanced the chain tail first."""

    code = "CHAIN_CONFLICT"

    def __init__(
        self,
        employee_id: UUID,
        expected_tail_id: UUID | None,
        actual_tail_id: UUID | None,
    ):
        self.employee_id = employee_id
        self.expected_tail_id = expected_tail_id
        self.actual_tail_id = actual_tail_id
        super().__init__(
            f"Chain tail for employee {employee_id} moved from "
            f"{expected_tail_id} to {actual_tail_id}; retry the append"
        )


# ============================================================================
# Structural
# ============================================================================


class OutOfOrderEvent(StructuralError):
    """Event timestamp precedes the current chain tail."""

    code = "OUT_OF_ORDER_EVENT"

    def __init__(self, employee_id: UUID, timestamp: datetime, tail_timestamp: datetime):
        self.employee_id = employee_id
        self.timestamp = timestamp
        self.tail_timestamp = tail_timestamp
        super().__init__(
            f"Event at {timestamp.isoformat()} for employee {employee_id} precedes "
            f"chain tail at {tail_timestamp.isoformat()}"
        )


class DanglingOpenPeriod(StructuralError):
    """A start event arrived while a period is still open."""

    code = "DANGLING_OPEN_PERIOD"

    def __init__(self, employee_id: UUID, open_period_id: UUID):
        self.employee_id = employee_id
        self.open_period_id = open_period_id
        super().__init__(
            f"Employee {employee_id} already has open work period {open_period_id}; "
            "close or correct it first"
        )


class NoOpenPeriod(StructuralError):
    """A stop event arrived with no open period to close."""

    code = "NO_OPEN_PERIOD"

    def __init__(self, employee_id: UUID):
        self.employee_id = employee_id
        super().__init__(f"Employee {employee_id} has no open work period to close")


class EventAlreadySuperseded(StructuralError):
    """Correction targets an event that was already corrected."""

    code = "EVENT_ALREADY_SUPERSEDED"

    def __init__(self, event_id: UUID, superseded_by_event_id: UUID | None):
        self.event_id = event_id
        self.superseded_by_event_id = superseded_by_event_id
        super().__init__(
            f"Clock event {event_id} is already superseded by {superseded_by_event_id}; "
            "correct the latest version instead"
        )


class InvalidCorrection(StructuralError):
    """Correction would leave a work period ending before it starts, or
    overlapping another period of the same employee."""

    code = "INVALID_CORRECTION"

    def __init__(
        self,
        work_period_id: UUID,
        start_time: datetime,
        end_time: datetime | None,
        overlapping_period_id: UUID | None = None,
    ):
        self.work_period_id = work_period_id
        self.start_time = start_time
        self.end_time = end_time
        self.overlapping_period_id = overlapping_period_id
        message = (
            f"Correction would make work period {work_period_id} run from "
            f"{start_time.isoformat()} to {end_time.isoformat() if end_time else 'now'}"
        )
        if overlapping_period_id is not None:
            message += f", overlapping work period {overlapping_period_id}"
        super().__init__(message)


class PeriodNotFinal(StructuralError):
    """Surcharges requested for a period that is not final."""

    code = "PERIOD_NOT_FINAL"

    def __init__(self, work_period_id: UUID, status: str):
        self.work_period_id = work_period_id
        self.status = status
        super().__init__(
            f"Work period {work_period_id} is '{status}'; surcharges need a final period"
        )


class DuplicateCalculation(StructuralError):
    """A calculation exists for a period whose span has since changed."""

    code = "DUPLICATE_CALCULATION"

    def __init__(self, work_period_id: UUID, calculation_id: UUID):
        self.work_period_id = work_period_id
        self.calculation_id = calculation_id
        super().__init__(
            f"Surcharge calculation {calculation_id} already exists for work period "
            f"{work_period_id} with a different span. Delete it to recompute."
        )


class InvalidPolicyDefinition(StructuralError):
    """Policy, rule, or assignment definition failed validation."""

    code = "INVALID_POLICY_DEFINITION"


class ViolationAlreadyAcknowledged(StructuralError):
    """Acknowledgment is recorded once and never overwritten."""

    code = "VIOLATION_ALREADY_ACKNOWLEDGED"

    def __init__(self, violation_id: UUID, acknowledged_by: UUID | None):
        self.violation_id = violation_id
        self.acknowledged_by = acknowledged_by
        super().__init__(
            f"Compliance violation {violation_id} was already acknowledged by {acknowledged_by}"
        )
