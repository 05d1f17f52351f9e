"""Immutable surcharge calculations for final work periods."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.calculators.calendar import local_date
from worktime_engine.calculators.hashing import normalize_timestamp
from worktime_engine.calculators.policy_resolver import PolicyResolver, ResolvedPolicy
from worktime_engine.calculators.surcharge_partition import partition_span, rule_spec_from_model
from worktime_engine.calculators.types import Interval, SurchargeResult
from worktime_engine.config import get_settings
from worktime_engine.exceptions import DuplicateCalculation, NotFoundError, PeriodNotFinal
from worktime_engine.models import (
    Employee,
    PolicyFamily,
    SurchargeCalculation,
    SurchargeModel,
    SurchargeRule,
    WorkPeriod,
    utc_now,
)
from worktime_engine.services.state_machine import WorkPeriodStateMachine

logger = logging.getLogger(__name__)

OVERLAP_POLICY = "max_wins"


@dataclass
class LoadedSurchargeModel:
    """A surcharge model with its active rules, strongest first."""

    model: SurchargeModel
    rules: list[SurchargeRule]


@dataclass
class SurchargeSummary:
    """Aggregated surcharge figures for an employee over a date range."""

    employee_id: UUID
    start: date
    end: date
    calculation_count: int = 0
    base_minutes: int = 0
    qualifying_minutes: int = 0
    surcharge_minutes: int = 0
    by_rule_kind: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def total_credited_minutes(self) -> int:
        return self.base_minutes + self.surcharge_minutes


class SurchargeCalculator:
    """Computes and persists one surcharge calculation per final work period.

    Key invariants:
    1. One calculation per work period (unique constraint)
    2. A repeated call returns the stored record
    3. A concurrent duplicate insert is a no-op that returns the winner
    4. If the period's span changed since the stored calculation, abort;
       the record must be deleted explicitly before recomputing
    """

    def __init__(
        self,
        session: AsyncSession,
        zone: ZoneInfo | None = None,
        engine_version: str | None = None,
    ):
        settings = get_settings()
        self.session = session
        self.zone = zone or settings.zone
        self.engine_version = engine_version or settings.engine_version
        self.resolver = PolicyResolver(session)

    async def _load_model(self, surcharge_model_id: UUID) -> LoadedSurchargeModel | None:
        model = await self.session.get(SurchargeModel, surcharge_model_id)
        if model is None or not model.is_active:
            return None
        result = await self.session.execute(
            select(SurchargeRule)
            .where(
                SurchargeRule.surcharge_model_id == surcharge_model_id,
                SurchargeRule.is_active.is_(True),
            )
            .order_by(SurchargeRule.priority.desc(), SurchargeRule.percentage.desc())
        )
        return LoadedSurchargeModel(model=model, rules=list(result.scalars().all()))

    async def resolve_model(
        self,
        employee: Employee,
        on_date: date,
    ) -> ResolvedPolicy[LoadedSurchargeModel] | None:
        """Effective surcharge model for an employee on a date."""
        return await self.resolver.resolve_for_employee(
            PolicyFamily.SURCHARGE_MODEL,
            employee,
            on_date,
            self._load_model,
        )

    async def get_calculation(self, work_period_id: UUID) -> SurchargeCalculation | None:
        """Stored calculation for a work period, if any."""
        result = await self.session.execute(
            select(SurchargeCalculation)
            .where(SurchargeCalculation.work_period_id == work_period_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def calculate(self, work_period_id: UUID) -> SurchargeCalculation:
        """Calculate surcharges for a final work period.

        Raises:
            NotFoundError: If the period does not exist
            PeriodNotFinal: If the period is still open or only closed
            DuplicateCalculation: If a stored calculation covers a
                different span than the period has now
        """
        period = await self.session.get(WorkPeriod, work_period_id)
        if period is None:
            raise NotFoundError("WorkPeriod", work_period_id)
        if not WorkPeriodStateMachine.can_calculate_surcharges(period.status):
            raise PeriodNotFinal(work_period_id, period.status)

        existing = await self.get_calculation(work_period_id)
        if existing is not None:
            if self.is_stale(existing, period):
                raise DuplicateCalculation(work_period_id, existing.surcharge_calculation_id)
            return existing

        employee = await self.session.get(Employee, period.employee_id)
        if employee is None:
            raise NotFoundError("Employee", period.employee_id)

        on_date = local_date(period.start_time, self.zone)
        resolved = await self.resolve_model(employee, on_date)

        span = Interval(period.start_time, period.end_time)
        base_minutes = period.credited_duration_minutes or 0
        if resolved is None:
            logger.info(
                "No surcharge model for employee %s on %s; recording zero surcharge",
                employee.employee_id,
                on_date,
            )
            model = None
            outcome = SurchargeResult(base_minutes=base_minutes)
        else:
            model = resolved.payload.model
            rules = [rule_spec_from_model(rule) for rule in resolved.payload.rules]
            outcome = partition_span(span, rules, self.zone, base_minutes=base_minutes)

        calculation = SurchargeCalculation(
            employee_id=employee.employee_id,
            organization_id=employee.organization_id,
            work_period_id=work_period_id,
            surcharge_rule_id=outcome.primary_rule_id,
            surcharge_model_id=model.surcharge_model_id if model is not None else None,
            calculation_date=on_date,
            base_minutes=outcome.base_minutes,
            qualifying_minutes=outcome.qualifying_minutes,
            surcharge_minutes=outcome.surcharge_minutes,
            applied_percentage=outcome.applied_percentage,
            calculation_details={
                "work_period_start": normalize_timestamp(period.start_time),
                "work_period_end": normalize_timestamp(period.end_time),
                "timezone": str(self.zone),
                "model_name": model.name if model is not None else None,
                "overlap_policy": OVERLAP_POLICY,
                "rules_applied": [b.to_dict() for b in outcome.breakdown],
                "calculated_at": utc_now().isoformat(),
            },
            overlap_policy=OVERLAP_POLICY,
            engine_version=self.engine_version,
        )

        try:
            async with self.session.begin_nested():
                self.session.add(calculation)
                await self.session.flush()
        except IntegrityError:
            winner = await self.get_calculation(work_period_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent surcharge calculation for work period %s; returning %s",
                work_period_id,
                winner.surcharge_calculation_id,
            )
            return winner

        logger.info(
            "Surcharge calculation %s for work period %s: %d qualifying, %d surcharge minutes",
            calculation.surcharge_calculation_id,
            work_period_id,
            calculation.qualifying_minutes,
            calculation.surcharge_minutes,
        )
        return calculation

    @staticmethod
    def is_stale(calculation: SurchargeCalculation, period: WorkPeriod) -> bool:
        """True when the stored span no longer matches the period."""
        details = calculation.calculation_details or {}
        return (
            details.get("work_period_start") != normalize_timestamp(period.start_time)
            or details.get("work_period_end") != normalize_timestamp(period.end_time)
        )

    async def delete_calculation(self, work_period_id: UUID) -> UUID:
        """Remove a stored calculation so it can be recomputed.

        Returns the deleted calculation id.
        """
        existing = await self.get_calculation(work_period_id)
        if existing is None:
            raise NotFoundError("SurchargeCalculation", work_period_id)

        calculation_id = existing.surcharge_calculation_id
        await self.session.execute(
            delete(SurchargeCalculation).where(
                SurchargeCalculation.surcharge_calculation_id == calculation_id
            )
        )
        self.session.expunge(existing)

        logger.info(
            "Deleted surcharge calculation %s for work period %s",
            calculation_id,
            work_period_id,
        )
        return calculation_id

    async def surcharge_summary(self, employee_id: UUID, start: date, end: date) -> SurchargeSummary:
        """Totals over calculations dated ``start`` through ``end`` inclusive."""
        result = await self.session.execute(
            select(SurchargeCalculation).where(
                SurchargeCalculation.employee_id == employee_id,
                SurchargeCalculation.calculation_date >= start,
                SurchargeCalculation.calculation_date <= end,
            )
        )
        summary = SurchargeSummary(employee_id=employee_id, start=start, end=end)
        for calc in result.scalars().all():
            summary.calculation_count += 1
            summary.base_minutes += calc.base_minutes
            summary.qualifying_minutes += calc.qualifying_minutes
            summary.surcharge_minutes += calc.surcharge_minutes
            for rule in (calc.calculation_details or {}).get("rules_applied", []):
                totals = summary.by_rule_kind.setdefault(
                    rule["rule_kind"], {"qualifying_minutes": 0, "surcharge_minutes": 0}
                )
                totals["qualifying_minutes"] += rule["qualifying_minutes"]
                totals["surcharge_minutes"] += rule["surcharge_minutes"]
        return summary
