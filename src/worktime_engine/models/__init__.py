"""ORM models."""

from worktime_engine.models.base import Base, TimestampMixin, UTCDateTime, utc_now
from worktime_engine.models.compliance import ComplianceViolation, ViolationKind
from worktime_engine.models.employee import Employee
from worktime_engine.models.ledger import ClockEvent, ClockEventKind
from worktime_engine.models.policy import (
    SCOPE_PRIORITY,
    AssignmentScope,
    PolicyAssignment,
    PolicyFamily,
)
from worktime_engine.models.regulation import BreakOption, BreakRule, WorkingTimeRegulation
from worktime_engine.models.surcharge import (
    SurchargeCalculation,
    SurchargeModel,
    SurchargeRule,
    SurchargeRuleKind,
)
from worktime_engine.models.work_period import WorkPeriod

__all__ = [
    "AssignmentScope",
    "Base",
    "BreakOption",
    "BreakRule",
    "ClockEvent",
    "ClockEventKind",
    "ComplianceViolation",
    "Employee",
    "PolicyAssignment",
    "PolicyFamily",
    "SCOPE_PRIORITY",
    "SurchargeCalculation",
    "SurchargeModel",
    "SurchargeRule",
    "SurchargeRuleKind",
    "TimestampMixin",
    "UTCDateTime",
    "ViolationKind",
    "WorkPeriod",
    "WorkingTimeRegulation",
    "utc_now",
]
