"""Time tracking service - orchestrates the clock event pipeline.

record_clock_event runs, in one transaction:

    EventLedger.append -> WorkPeriodDeriver.apply
        -> ComplianceEngine.evaluate  (own savepoint; failure leaves period closed)
        -> mark final
        -> SurchargeCalculator.calculate  (own savepoint; failure leaves period final)

Ledger and deriver errors abort the whole operation. Compliance and
surcharge failures are logged and contained so the clock event is never
lost; ``finalize_period`` retries them for a closed period.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.calculators.calendar import local_date
from worktime_engine.calculators.types import ChainVerification
from worktime_engine.config import get_settings
from worktime_engine.exceptions import DuplicateCalculation, NotFoundError, WorktimeError
from worktime_engine.models import ClockEvent, ClockEventKind, Employee, SurchargeCalculation, WorkPeriod
from worktime_engine.services.compliance_engine import ComplianceEngine, ComplianceResult
from worktime_engine.services.event_ledger import EventLedger
from worktime_engine.services.state_machine import WorkPeriodStatus
from worktime_engine.services.surcharge_calculator import SurchargeCalculator
from worktime_engine.services.work_period_deriver import TimeSummary, WorkPeriodDeriver

logger = logging.getLogger(__name__)


@dataclass
class ClockEventOutcome:
    """Everything a clock event produced."""

    event: ClockEvent
    work_period: WorkPeriod | None = None
    compliance: ComplianceResult | None = None
    surcharge: SurchargeCalculation | None = None
    stale_surcharge: bool = False
    stale_calculations: list[SurchargeCalculation] = field(default_factory=list)


class TimeTrackingService:
    """Inbound and outbound operations for clock events and work periods."""

    def __init__(self, session: AsyncSession, zone: ZoneInfo | None = None):
        self.session = session
        self.zone = zone or get_settings().zone
        self.ledger = EventLedger(session)
        self.deriver = WorkPeriodDeriver(session)
        self.compliance = ComplianceEngine(session, zone=self.zone)
        self.surcharges = SurchargeCalculator(session, zone=self.zone)

    async def _require_employee(self, employee_id: UUID) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def record_clock_event(
        self,
        employee_id: UUID,
        kind: ClockEventKind | str,
        timestamp: datetime,
        metadata: dict[str, Any] | None = None,
        expected_tail_id: UUID | None = None,
    ) -> ClockEventOutcome:
        """Append a start/stop event and run everything it triggers."""
        await self._require_employee(employee_id)

        event = await self.ledger.append(
            employee_id, kind, timestamp, metadata, expected_tail_id=expected_tail_id
        )
        period = await self.deriver.apply(event)
        outcome = ClockEventOutcome(event=event, work_period=period)

        if period.status == WorkPeriodStatus.CLOSED.value:
            await self._finalize(period, outcome)
        return outcome

    async def finalize_period(self, work_period_id: UUID) -> ClockEventOutcome | None:
        """Re-run compliance and surcharges for a closed period."""
        period = await self.deriver.get_period(work_period_id)
        if period.status != WorkPeriodStatus.CLOSED.value:
            return None
        stop_event = await self.ledger.get_event(period.stop_event_id)
        outcome = ClockEventOutcome(event=stop_event, work_period=period)
        await self._finalize(period, outcome)
        return outcome

    async def _finalize(self, period: WorkPeriod, outcome: ClockEventOutcome) -> None:
        outcome.compliance = await self._run_compliance(period)
        if outcome.compliance is None:
            return
        await self.deriver.mark_final(period)
        outcome.surcharge = await self._run_surcharge(period)

    async def _run_compliance(self, period: WorkPeriod) -> ComplianceResult | None:
        on_date = local_date(period.start_time, self.zone)
        try:
            async with self.session.begin_nested():
                return await self.compliance.evaluate(period.employee_id, on_date)
        except (WorktimeError, SQLAlchemyError):
            logger.exception(
                "Compliance evaluation failed for employee %s on %s; period %s left closed",
                period.employee_id,
                on_date,
                period.work_period_id,
            )
            await self.session.refresh(period)
            return None

    async def _run_surcharge(self, period: WorkPeriod) -> SurchargeCalculation | None:
        try:
            async with self.session.begin_nested():
                return await self.surcharges.calculate(period.work_period_id)
        except DuplicateCalculation:
            raise
        except (WorktimeError, SQLAlchemyError):
            logger.exception(
                "Surcharge calculation failed for work period %s; retry with calculate",
                period.work_period_id,
            )
            await self.session.refresh(period)
            return None

    async def correct_clock_event(
        self,
        clock_event_id: UUID,
        new_timestamp: datetime,
        metadata: dict[str, Any] | None = None,
        expected_tail_id: UUID | None = None,
    ) -> ClockEventOutcome:
        """Supersede an event and carry the correction into its work period.

        The affected day is re-evaluated. A surcharge calculation that no
        longer matches its period's span, whether the corrected period or
        one the re-evaluation shrank, is reported as stale, never
        rewritten.
        """
        correction = await self.ledger.correct(
            clock_event_id, new_timestamp, metadata, expected_tail_id=expected_tail_id
        )
        corrected_kind = correction.metadata_json["corrected_kind"]
        period = await self.deriver.apply_correction(correction, corrected_kind)
        outcome = ClockEventOutcome(event=correction, work_period=period)
        if period is None:
            return outcome

        if period.status == WorkPeriodStatus.CLOSED.value:
            await self._finalize(period, outcome)
        elif period.status == WorkPeriodStatus.FINAL.value:
            outcome.compliance = await self._run_compliance(period)
            outcome.surcharge = await self.surcharges.get_calculation(period.work_period_id)
            if outcome.surcharge is not None:
                outcome.stale_surcharge = self.surcharges.is_stale(outcome.surcharge, period)

        # Re-evaluation may have shrunk other final periods of the same day.
        affected = [period]
        if outcome.compliance is not None:
            affected += [
                p for p in outcome.compliance.adjusted_periods
                if p.work_period_id != period.work_period_id
            ]
        for affected_period in affected:
            if affected_period.status != WorkPeriodStatus.FINAL.value:
                continue
            calculation = await self.surcharges.get_calculation(affected_period.work_period_id)
            if calculation is None or not self.surcharges.is_stale(calculation, affected_period):
                continue
            outcome.stale_calculations.append(calculation)
            logger.warning(
                "Surcharge calculation %s is stale after correction %s; "
                "delete and recalculate work period %s",
                calculation.surcharge_calculation_id,
                correction.clock_event_id,
                affected_period.work_period_id,
            )
        return outcome

    async def verify_chain_integrity(self, employee_id: UUID) -> ChainVerification:
        """Detailed chain verification; does not raise on tampering."""
        await self._require_employee(employee_id)
        verification = await self.ledger.verify_chain(employee_id)
        if not verification.is_valid:
            logger.error(
                "Clock event chain for employee %s has %d integrity issue(s)",
                employee_id,
                len(verification.issues),
            )
        return verification

    async def get_work_periods(self, employee_id: UUID, start: datetime, end: datetime) -> list[WorkPeriod]:
        return await self.deriver.get_work_periods(employee_id, start, end)

    async def time_summary(self, employee_id: UUID, start: datetime, end: datetime) -> TimeSummary:
        return await self.deriver.time_summary(employee_id, start, end)

