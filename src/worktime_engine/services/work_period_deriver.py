"""Derives work periods from start/stop clock events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.calculators.break_rules import minutes_between
from worktime_engine.calculators.calendar import day_bounds
from worktime_engine.exceptions import (
    DanglingOpenPeriod,
    InvalidCorrection,
    NoOpenPeriod,
    NotFoundError,
    OutOfOrderEvent,
)
from worktime_engine.models import ClockEvent, ClockEventKind, WorkPeriod, utc_now
from worktime_engine.services.state_machine import WorkPeriodStateMachine, WorkPeriodStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSummary:
    """Credited time over a date range."""

    employee_id: UUID
    start: datetime
    end: datetime
    total_minutes: int
    period_count: int

    @property
    def average_minutes(self) -> int:
        if self.period_count == 0:
            return 0
        return round(self.total_minutes / self.period_count)


class WorkPeriodDeriver:
    """Pairs start/stop events into work periods.

    A start opens a period, the next stop closes it. A start while a
    period is open is rejected; there is no auto-closing.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_period(self, work_period_id: UUID) -> WorkPeriod:
        """Load a work period or raise NotFoundError."""
        period = await self.session.get(WorkPeriod, work_period_id)
        if period is None:
            raise NotFoundError("WorkPeriod", work_period_id)
        return period

    async def get_open_period(self, employee_id: UUID) -> WorkPeriod | None:
        """The employee's open period, if any."""
        result = await self.session.execute(
            select(WorkPeriod).where(
                WorkPeriod.employee_id == employee_id,
                WorkPeriod.status == WorkPeriodStatus.OPEN.value,
            )
        )
        return result.scalar_one_or_none()

    async def apply(self, event: ClockEvent) -> WorkPeriod:
        """Open or close a period for a start or stop event.

        Raises:
            DanglingOpenPeriod: start while a period is open
            NoOpenPeriod: stop with nothing to close
            OutOfOrderEvent: start inside an existing period, or stop
                before the open period's start
        """
        if event.kind == ClockEventKind.START.value:
            return await self._open(event)
        if event.kind == ClockEventKind.STOP.value:
            return await self._close(event)
        raise ValueError(f"Corrections are applied with apply_correction, got {event.kind!r}")

    async def find_overlapping(
        self,
        employee_id: UUID,
        start: datetime,
        end: datetime | None,
        exclude_id: UUID | None = None,
    ) -> WorkPeriod | None:
        """First other period whose raw span overlaps ``[start, end)``.

        ``end`` of None means the span is still open. Periods that merely
        touch (one ends when the other starts) do not overlap.
        """
        query = select(WorkPeriod).where(WorkPeriod.employee_id == employee_id)
        if end is not None:
            query = query.where(WorkPeriod.start_time < end)
        if exclude_id is not None:
            query = query.where(WorkPeriod.work_period_id != exclude_id)
        result = await self.session.execute(query.order_by(WorkPeriod.start_time))
        for other in result.scalars():
            other_end = other.raw_end_time
            if other_end is None or other_end > start:
                return other
        return None

    async def _open(self, event: ClockEvent) -> WorkPeriod:
        existing = await self.get_open_period(event.employee_id)
        if existing is not None:
            raise DanglingOpenPeriod(event.employee_id, existing.work_period_id)

        overlapping = await self.find_overlapping(event.employee_id, event.timestamp, None)
        if overlapping is not None:
            raise OutOfOrderEvent(event.employee_id, event.timestamp, overlapping.raw_end_time)

        period = WorkPeriod(
            employee_id=event.employee_id,
            start_event_id=event.clock_event_id,
            start_time=event.timestamp,
            status=WorkPeriodStatus.OPEN.value,
            was_adjusted=False,
        )
        self.session.add(period)
        await self.session.flush()

        logger.info(
            "Opened work period %s for employee %s at %s",
            period.work_period_id,
            event.employee_id,
            event.timestamp.isoformat(),
        )
        return period

    async def _close(self, event: ClockEvent) -> WorkPeriod:
        period = await self.get_open_period(event.employee_id)
        if period is None:
            raise NoOpenPeriod(event.employee_id)
        if event.timestamp < period.start_time:
            raise OutOfOrderEvent(event.employee_id, event.timestamp, period.start_time)

        WorkPeriodStateMachine.transition(period, WorkPeriodStatus.CLOSED)
        period.stop_event_id = event.clock_event_id
        period.end_time = event.timestamp
        period.credited_duration_minutes = minutes_between(period.start_time, event.timestamp)
        period.updated_at = utc_now()
        await self.session.flush()

        logger.info(
            "Closed work period %s for employee %s: %d minutes",
            period.work_period_id,
            event.employee_id,
            period.credited_duration_minutes,
        )
        return period

    async def apply_correction(self, correction: ClockEvent, corrected_kind: str) -> WorkPeriod | None:
        """Re-time the period whose start or stop event was superseded.

        Minutes already deducted for breaks are deducted again from the
        corrected raw duration (never more than it), and the original_*
        fields track the corrected raw values. The period now references
        the correction so a later correction of it is found the same way.
        Returns None when no period references the superseded event.
        """
        superseded_id = correction.supersedes_event_id
        result = await self.session.execute(
            select(WorkPeriod).where(
                (WorkPeriod.start_event_id == superseded_id)
                | (WorkPeriod.stop_event_id == superseded_id)
            )
        )
        period = result.scalar_one_or_none()
        if period is None:
            logger.warning(
                "Correction %s supersedes event %s that no work period references",
                correction.clock_event_id,
                superseded_id,
            )
            return None

        raw_start = period.start_time
        raw_end = period.raw_end_time
        corrects_start = corrected_kind == ClockEventKind.START.value
        if corrects_start:
            raw_start = correction.timestamp
        else:
            raw_end = correction.timestamp

        if raw_end is not None and raw_end < raw_start:
            raise InvalidCorrection(period.work_period_id, raw_start, raw_end)
        overlapping = await self.find_overlapping(
            period.employee_id, raw_start, raw_end, exclude_id=period.work_period_id
        )
        if overlapping is not None:
            raise InvalidCorrection(
                period.work_period_id, raw_start, raw_end, overlapping.work_period_id
            )

        if corrects_start:
            period.start_event_id = correction.clock_event_id
        else:
            period.stop_event_id = correction.clock_event_id
        period.start_time = raw_start
        if raw_end is not None:
            self._retime(period, raw_start, raw_end)
        period.updated_at = utc_now()
        await self.session.flush()

        logger.info(
            "Re-timed work period %s after correction %s",
            period.work_period_id,
            correction.clock_event_id,
        )
        return period

    @staticmethod
    def _retime(period: WorkPeriod, raw_start: datetime, raw_end: datetime) -> None:
        raw_minutes = minutes_between(raw_start, raw_end)
        if not period.was_adjusted:
            period.end_time = raw_end
            period.credited_duration_minutes = raw_minutes
            return

        reason = dict(period.adjustment_reason or {})
        deducted = min(int(reason.get("deducted_minutes", 0)), raw_minutes)
        period.original_end_time = raw_end
        period.original_duration_minutes = raw_minutes
        period.end_time = raw_end - timedelta(minutes=deducted)
        period.credited_duration_minutes = raw_minutes - deducted
        reason.update(
            deducted_minutes=deducted,
            original_end_time=raw_end.isoformat(),
            original_duration_minutes=raw_minutes,
        )
        period.adjustment_reason = reason

    async def mark_final(self, period: WorkPeriod) -> WorkPeriod:
        """Transition a closed period to final."""
        WorkPeriodStateMachine.transition(period, WorkPeriodStatus.FINAL)
        period.updated_at = utc_now()
        await self.session.flush()
        return period

    async def get_work_periods(
        self,
        employee_id: UUID,
        start: datetime,
        end: datetime,
        include_open: bool = True,
    ) -> list[WorkPeriod]:
        """Periods starting in ``[start, end)``, ordered by start time."""
        query = select(WorkPeriod).where(
            WorkPeriod.employee_id == employee_id,
            WorkPeriod.start_time >= start,
            WorkPeriod.start_time < end,
        )
        if not include_open:
            query = query.where(WorkPeriod.status != WorkPeriodStatus.OPEN.value)
        result = await self.session.execute(query.order_by(WorkPeriod.start_time))
        return list(result.scalars().all())

    async def get_periods_on(
        self,
        employee_id: UUID,
        day: date,
        zone: ZoneInfo,
        include_open: bool = False,
    ) -> list[WorkPeriod]:
        """Periods starting on a local calendar day."""
        start, end = day_bounds(day, zone)
        return await self.get_work_periods(employee_id, start, end, include_open=include_open)

    async def time_summary(self, employee_id: UUID, start: datetime, end: datetime) -> TimeSummary:
        """Credited minutes over closed and final periods in a range."""
        periods = await self.get_work_periods(employee_id, start, end, include_open=False)
        return TimeSummary(
            employee_id=employee_id,
            start=start,
            end=end,
            total_minutes=sum(p.credited_duration_minutes or 0 for p in periods),
            period_count=len(periods),
        )
