"""Worktime engine services."""

from worktime_engine.services.compliance_engine import ComplianceEngine, ComplianceResult
from worktime_engine.services.event_ledger import EventLedger, run_with_chain_retry
from worktime_engine.services.policy_admin import PolicyAdminService
from worktime_engine.services.state_machine import (
    InvalidTransitionError,
    WorkPeriodStateMachine,
    WorkPeriodStatus,
)
from worktime_engine.services.surcharge_calculator import SurchargeCalculator, SurchargeSummary
from worktime_engine.services.time_tracking import ClockEventOutcome, TimeTrackingService
from worktime_engine.services.work_period_deriver import TimeSummary, WorkPeriodDeriver

__all__ = [
    "ClockEventOutcome",
    "ComplianceEngine",
    "ComplianceResult",
    "EventLedger",
    "InvalidTransitionError",
    "PolicyAdminService",
    "SurchargeCalculator",
    "SurchargeSummary",
    "TimeSummary",
    "TimeTrackingService",
    "WorkPeriodDeriver",
    "WorkPeriodStateMachine",
    "WorkPeriodStatus",
    "run_with_chain_retry",
]
