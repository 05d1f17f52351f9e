"""Working-time compliance evaluation and break auto-adjustment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.calculators.break_rules import (
    calculate_break_requirement,
    format_minutes,
    gaps_between,
    minutes_between,
    regulation_spec_from_model,
)
from worktime_engine.calculators.calendar import local_date, week_bounds
from worktime_engine.calculators.policy_resolver import PolicyResolver, ResolvedPolicy
from worktime_engine.calculators.types import (
    BreakRequirement,
    ComplianceCheck,
    ComplianceWarning,
    RegulationSpec,
    Severity,
)
from worktime_engine.config import get_settings
from worktime_engine.exceptions import NotFoundError, ViolationAlreadyAcknowledged
from worktime_engine.models import (
    ComplianceViolation,
    Employee,
    PolicyFamily,
    ViolationKind,
    WorkingTimeRegulation,
    WorkPeriod,
    utc_now,
)
from worktime_engine.services.state_machine import WorkPeriodStateMachine
from worktime_engine.services.work_period_deriver import WorkPeriodDeriver

logger = logging.getLogger(__name__)


@dataclass
class ComplianceResult:
    """Outcome of evaluating one employee-day."""

    employee_id: UUID
    on_date: date
    regulation_id: UUID | None = None
    adjusted_periods: list[WorkPeriod] = field(default_factory=list)
    violations: list[ComplianceViolation] = field(default_factory=list)
    break_requirement: BreakRequirement | None = None

    @property
    def is_compliant(self) -> bool:
        return not self.violations


class ComplianceEngine:
    """Applies the employee's effective working-time regulation to a day.

    Limit checks only record violations. An unmet break requirement
    shrinks the day's last period by the deficit and records a
    ``break_required`` violation; both writes share one savepoint.
    With no regulation in effect nothing is checked.
    """

    def __init__(self, session: AsyncSession, zone: ZoneInfo | None = None):
        self.session = session
        self.zone = zone or get_settings().zone
        self.resolver = PolicyResolver(session)
        self.deriver = WorkPeriodDeriver(session)

    async def get_employee(self, employee_id: UUID) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def _load_regulation(self, regulation_id: UUID) -> WorkingTimeRegulation | None:
        regulation = await self.session.get(WorkingTimeRegulation, regulation_id)
        if regulation is None or not regulation.is_active:
            return None
        return regulation

    async def resolve_regulation(
        self,
        employee: Employee,
        on_date: date,
    ) -> ResolvedPolicy[WorkingTimeRegulation] | None:
        """Effective regulation for an employee on a date."""
        return await self.resolver.resolve_for_employee(
            PolicyFamily.WORKING_TIME_REGULATION,
            employee,
            on_date,
            self._load_regulation,
        )

    # ------------------------------------------------------------------
    # Persisted evaluation
    # ------------------------------------------------------------------

    async def evaluate(self, employee_id: UUID, on_date: date) -> ComplianceResult:
        """Evaluate closed and final periods starting on ``on_date``.

        Durations are read from the raw (pre-adjustment) values so that
        repeated evaluation of the same day neither re-shrinks a period
        nor records the same violation twice.
        """
        employee = await self.get_employee(employee_id)
        result = ComplianceResult(employee_id=employee_id, on_date=on_date)

        resolved = await self.resolve_regulation(employee, on_date)
        if resolved is None:
            logger.info(
                "No working-time regulation for employee %s on %s; no checks applied",
                employee_id,
                on_date,
            )
            return result

        regulation = resolved.payload
        spec = regulation_spec_from_model(regulation)
        result.regulation_id = regulation.regulation_id

        periods = await self.deriver.get_periods_on(employee_id, on_date, self.zone)
        if not periods:
            return result

        durations = [p.raw_duration_minutes or 0 for p in periods]
        daily_total = sum(durations)
        gaps = gaps_between([(p.start_time, p.raw_end_time) for p in periods])

        async with self.session.begin_nested():
            await self._check_daily(result, employee, spec, daily_total)
            await self._check_weekly(result, employee, spec)
            await self._check_uninterrupted(result, employee, spec, periods)
            await self._check_breaks(result, employee, spec, periods, daily_total, gaps)
            await self.session.flush()

        return result

    async def _check_daily(
        self,
        result: ComplianceResult,
        employee: Employee,
        spec: RegulationSpec,
        daily_total: int,
    ) -> None:
        limit = spec.max_daily_minutes
        if limit is None or daily_total <= limit:
            return
        violation = await self._record_violation(
            employee,
            spec,
            result.on_date,
            ViolationKind.MAX_DAILY,
            {"actual_minutes": daily_total, "limit_minutes": limit},
        )
        result.violations.append(violation)

    async def _check_weekly(
        self,
        result: ComplianceResult,
        employee: Employee,
        spec: RegulationSpec,
    ) -> None:
        limit = spec.max_weekly_minutes
        if limit is None:
            return
        start, end = week_bounds(result.on_date, self.zone)
        week = await self.deriver.get_work_periods(
            employee.employee_id, start, end, include_open=False
        )
        weekly_total = sum(p.raw_duration_minutes or 0 for p in week)
        if weekly_total <= limit:
            return
        violation = await self._record_violation(
            employee,
            spec,
            result.on_date,
            ViolationKind.MAX_WEEKLY,
            {
                "actual_minutes": weekly_total,
                "limit_minutes": limit,
                "week_start": start.isoformat(),
            },
        )
        result.violations.append(violation)

    async def _check_uninterrupted(
        self,
        result: ComplianceResult,
        employee: Employee,
        spec: RegulationSpec,
        periods: list[WorkPeriod],
    ) -> None:
        limit = spec.max_uninterrupted_minutes
        if limit is None:
            return
        longest = max(periods, key=lambda p: p.raw_duration_minutes or 0)
        actual = longest.raw_duration_minutes or 0
        if actual <= limit:
            return
        violation = await self._record_violation(
            employee,
            spec,
            result.on_date,
            ViolationKind.MAX_UNINTERRUPTED,
            {"actual_minutes": actual, "limit_minutes": limit},
            work_period_id=longest.work_period_id,
        )
        result.violations.append(violation)

    async def _check_breaks(
        self,
        result: ComplianceResult,
        employee: Employee,
        spec: RegulationSpec,
        periods: list[WorkPeriod],
        daily_total: int,
        gaps: list[int],
    ) -> None:
        requirement = calculate_break_requirement(spec, daily_total, gaps)
        result.break_requirement = requirement
        if not requirement.is_required or requirement.satisfied:
            return

        already_deducted = sum(
            int((p.adjustment_reason or {}).get("deducted_minutes", 0))
            for p in periods
            if p.was_adjusted
        )
        last = periods[-1]
        outstanding = requirement.remaining - already_deducted
        deducted = 0
        if outstanding > 0:
            deducted = self._deduct_break(last, outstanding, requirement)
            if deducted:
                result.adjusted_periods.append(last)

        violation = await self._record_violation(
            employee,
            spec,
            result.on_date,
            ViolationKind.BREAK_REQUIRED,
            {
                "worked_minutes": daily_total,
                "required_minutes": requirement.total_break_needed,
                "break_taken_minutes": requirement.break_taken,
                "break_counted_minutes": requirement.break_counted,
                "deficit_minutes": requirement.remaining,
                "deducted_minutes": deducted,
                "rule_id": _str_or_none(requirement.rule.rule_id if requirement.rule else None),
                "threshold_minutes": requirement.rule.threshold_minutes if requirement.rule else None,
                "split_options": list(requirement.split_options),
            },
            work_period_id=last.work_period_id,
        )
        result.violations.append(violation)

    def _deduct_break(
        self,
        period: WorkPeriod,
        outstanding: int,
        requirement: BreakRequirement,
    ) -> int:
        """Shrink ``period`` by up to ``outstanding`` minutes; returns minutes deducted."""
        if period.was_adjusted or not WorkPeriodStateMachine.can_adjust(period.status):
            logger.warning(
                "Break deficit of %d minutes on work period %s left unadjusted (status %s, adjusted=%s)",
                outstanding,
                period.work_period_id,
                period.status,
                period.was_adjusted,
            )
            return 0

        raw_end = period.end_time
        raw_minutes = period.credited_duration_minutes or minutes_between(period.start_time, raw_end)
        deficit = min(outstanding, raw_minutes)
        if deficit <= 0:
            return 0

        period.original_end_time = raw_end
        period.original_duration_minutes = raw_minutes
        period.end_time = raw_end - timedelta(minutes=deficit)
        period.credited_duration_minutes = raw_minutes - deficit
        period.was_adjusted = True
        period.adjustment_reason = {
            "kind": ViolationKind.BREAK_REQUIRED.value,
            "rule_id": _str_or_none(requirement.rule.rule_id if requirement.rule else None),
            "deducted_minutes": deficit,
            "original_end_time": raw_end.isoformat(),
            "original_duration_minutes": raw_minutes,
        }
        period.updated_at = utc_now()

        logger.info(
            "Deducted %d break minutes from work period %s (%d -> %d)",
            deficit,
            period.work_period_id,
            raw_minutes,
            period.credited_duration_minutes,
        )
        return deficit

    async def _record_violation(
        self,
        employee: Employee,
        spec: RegulationSpec,
        on_date: date,
        kind: ViolationKind,
        details: dict[str, Any],
        work_period_id: UUID | None = None,
    ) -> ComplianceViolation:
        """Insert a violation unless the same one is already recorded.

        Uninterrupted-work violations are keyed by work period; every
        other kind is recorded once per employee-day.
        """
        query = select(ComplianceViolation).where(
            ComplianceViolation.employee_id == employee.employee_id,
            ComplianceViolation.violation_date == on_date,
            ComplianceViolation.kind == kind.value,
        )
        if kind == ViolationKind.MAX_UNINTERRUPTED:
            query = query.where(ComplianceViolation.work_period_id == work_period_id)
        existing = (await self.session.execute(query)).scalars().first()
        if existing is not None:
            return existing

        violation = ComplianceViolation(
            employee_id=employee.employee_id,
            organization_id=employee.organization_id,
            regulation_id=spec.regulation_id,
            work_period_id=work_period_id,
            violation_date=on_date,
            kind=kind.value,
            details=details,
        )
        self.session.add(violation)

        logger.warning(
            "Compliance violation %s for employee %s on %s: %s",
            kind.value,
            employee.employee_id,
            on_date,
            details,
        )
        return violation

    # ------------------------------------------------------------------
    # Live check
    # ------------------------------------------------------------------

    async def check_session(self, employee_id: UUID, at: datetime) -> ComplianceCheck:
        """Read-only check of the employee's day as of ``at``.

        An open period counts as running until ``at``. Nothing is written.
        """
        employee = await self.get_employee(employee_id)
        on_date = local_date(at, self.zone)
        resolved = await self.resolve_regulation(employee, on_date)
        if resolved is None:
            return ComplianceCheck(employee_id=employee_id, regulation=None)

        spec = regulation_spec_from_model(resolved.payload)
        check = ComplianceCheck(employee_id=employee_id, regulation=spec)

        periods = await self.deriver.get_periods_on(employee_id, on_date, self.zone, include_open=True)
        spans = [
            (p.start_time, p.raw_end_time or at)
            for p in periods
            if p.start_time <= at
        ]
        durations = [minutes_between(start, end) for start, end in spans]
        daily_total = sum(durations)
        current_session = durations[-1] if durations else 0

        week_start, _ = week_bounds(on_date, self.zone)
        week = await self.deriver.get_work_periods(employee_id, week_start, at, include_open=True)
        weekly_total = sum(minutes_between(p.start_time, p.raw_end_time or at) for p in week)

        _add_limit_warning(
            check, ViolationKind.MAX_DAILY, "Daily working time", daily_total,
            spec.max_daily_minutes, Severity.VIOLATION,
        )
        _add_limit_warning(
            check, ViolationKind.MAX_WEEKLY, "Weekly working time", weekly_total,
            spec.max_weekly_minutes, Severity.VIOLATION,
        )
        _add_limit_warning(
            check, ViolationKind.MAX_UNINTERRUPTED, "Uninterrupted work", current_session,
            spec.max_uninterrupted_minutes, Severity.WARNING,
        )

        requirement = calculate_break_requirement(spec, daily_total, gaps_between(spans))
        check.break_requirement = requirement
        if requirement.is_required and requirement.remaining > 0:
            check.warnings.append(
                ComplianceWarning(
                    kind=ViolationKind.BREAK_REQUIRED.value,
                    message=(
                        f"Break required: {format_minutes(requirement.remaining)} remaining "
                        f"of {format_minutes(requirement.total_break_needed)} total"
                    ),
                    actual_minutes=requirement.break_counted,
                    limit_minutes=requirement.total_break_needed,
                    severity=Severity.WARNING,
                )
            )
        return check

    # ------------------------------------------------------------------
    # Violation reporting
    # ------------------------------------------------------------------

    async def get_violation(self, violation_id: UUID) -> ComplianceViolation:
        violation = await self.session.get(ComplianceViolation, violation_id)
        if violation is None:
            raise NotFoundError("ComplianceViolation", violation_id)
        return violation

    async def get_violations(
        self,
        employee_id: UUID | None = None,
        organization_id: UUID | None = None,
        start: date | None = None,
        end: date | None = None,
        kind: ViolationKind | str | None = None,
        acknowledged: bool | None = None,
    ) -> list[ComplianceViolation]:
        """Violations for an employee or organization, newest first.

        ``start``/``end`` are inclusive dates.
        """
        if employee_id is None and organization_id is None:
            raise ValueError("Either employee_id or organization_id is required")

        query = select(ComplianceViolation)
        if employee_id is not None:
            query = query.where(ComplianceViolation.employee_id == employee_id)
        if organization_id is not None:
            query = query.where(ComplianceViolation.organization_id == organization_id)
        if start is not None:
            query = query.where(ComplianceViolation.violation_date >= start)
        if end is not None:
            query = query.where(ComplianceViolation.violation_date <= end)
        if kind is not None:
            kind_value = kind.value if isinstance(kind, ViolationKind) else kind
            query = query.where(ComplianceViolation.kind == kind_value)
        if acknowledged is True:
            query = query.where(ComplianceViolation.acknowledged_at.is_not(None))
        elif acknowledged is False:
            query = query.where(ComplianceViolation.acknowledged_at.is_(None))

        result = await self.session.execute(
            query.order_by(
                ComplianceViolation.violation_date.desc(),
                ComplianceViolation.created_at.desc(),
            )
        )
        return list(result.scalars().all())

    async def acknowledge_violation(
        self,
        violation_id: UUID,
        acknowledged_by: UUID,
        note: str | None = None,
    ) -> ComplianceViolation:
        """Record who acknowledged a violation; allowed once."""
        violation = await self.get_violation(violation_id)
        if violation.is_acknowledged:
            raise ViolationAlreadyAcknowledged(violation_id, violation.acknowledged_by)

        violation.acknowledged_by = acknowledged_by
        violation.acknowledged_at = utc_now()
        violation.acknowledged_note = note
        await self.session.flush()

        logger.info("Violation %s acknowledged by %s", violation_id, acknowledged_by)
        return violation


def _add_limit_warning(
    check: ComplianceCheck,
    kind: ViolationKind,
    label: str,
    actual: int,
    limit: int | None,
    severity: Severity,
) -> None:
    if limit is None or actual <= limit:
        return
    check.warnings.append(
        ComplianceWarning(
            kind=kind.value,
            message=f"{label} ({format_minutes(actual)}) exceeds limit ({format_minutes(limit)})",
            actual_minutes=actual,
            limit_minutes=limit,
            severity=severity,
        )
    )


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value is not None else None
