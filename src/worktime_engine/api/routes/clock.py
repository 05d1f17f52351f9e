"""Clock event and work period API endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from worktime_engine.api.dependencies import DbSession, OrganizationId, load_employee
from worktime_engine.api.schemas import (
    ChainVerificationResponse,
    ClockEventCorrect,
    ClockEventCreate,
    ClockEventOutcomeResponse,
    ClockEventResponse,
    ErrorResponse,
    SurchargeCalculationResponse,
    TimeSummaryResponse,
    ViolationResponse,
    WorkPeriodListResponse,
    WorkPeriodResponse,
)
from worktime_engine.models import ClockEvent, WorkPeriod
from worktime_engine.services.time_tracking import ClockEventOutcome, TimeTrackingService

router = APIRouter(tags=["clock-events"])


def _outcome_response(outcome: ClockEventOutcome) -> ClockEventOutcomeResponse:
    violations = outcome.compliance.violations if outcome.compliance is not None else []
    return ClockEventOutcomeResponse(
        event=ClockEventResponse.model_validate(outcome.event),
        work_period=(
            WorkPeriodResponse.model_validate(outcome.work_period)
            if outcome.work_period is not None
            else None
        ),
        violations=[ViolationResponse.model_validate(v) for v in violations],
        surcharge=(
            SurchargeCalculationResponse.model_validate(outcome.surcharge)
            if outcome.surcharge is not None
            else None
        ),
        stale_surcharge=outcome.stale_surcharge,
        stale_calculations=[
            SurchargeCalculationResponse.model_validate(c) for c in outcome.stale_calculations
        ],
    )


# ============================================================================
# Clock events
# ============================================================================


@router.post(
    "/clock-events",
    response_model=ClockEventOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def record_clock_event(
    db: DbSession,
    organization_id: OrganizationId,
    payload: ClockEventCreate,
) -> ClockEventOutcomeResponse:
    """Record a start or stop event and run the derived processing."""
    await load_employee(db, organization_id, payload.employee_id)

    service = TimeTrackingService(db)
    outcome = await service.record_clock_event(
        employee_id=payload.employee_id,
        kind=payload.kind,
        timestamp=payload.timestamp,
        metadata=payload.metadata,
        expected_tail_id=payload.expected_tail_id,
    )
    await db.commit()
    return _outcome_response(outcome)


@router.post(
    "/clock-events/{clock_event_id}/correct",
    response_model=ClockEventOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def correct_clock_event(
    db: DbSession,
    organization_id: OrganizationId,
    clock_event_id: Annotated[UUID, Path()],
    payload: ClockEventCorrect,
) -> ClockEventOutcomeResponse:
    """Append a correction that supersedes an existing event."""
    event = await db.get(ClockEvent, clock_event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Clock event not found",
        )
    await load_employee(db, organization_id, event.employee_id)

    service = TimeTrackingService(db)
    outcome = await service.correct_clock_event(
        clock_event_id,
        payload.new_timestamp,
        metadata=payload.metadata,
        expected_tail_id=payload.expected_tail_id,
    )
    await db.commit()
    return _outcome_response(outcome)


@router.get(
    "/employees/{employee_id}/clock-events",
    response_model=list[ClockEventResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_clock_events(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: Annotated[UUID, Path()],
) -> list[ClockEventResponse]:
    """The employee's full chain in sequence order, superseded events included."""
    await load_employee(db, organization_id, employee_id)
    service = TimeTrackingService(db)
    events = await service.ledger.get_chain(employee_id)
    return [ClockEventResponse.model_validate(e) for e in events]


@router.get(
    "/employees/{employee_id}/chain/verify",
    response_model=ChainVerificationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def verify_chain(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: Annotated[UUID, Path()],
) -> ChainVerificationResponse:
    """Recompute every digest in the employee's chain and report breaks."""
    await load_employee(db, organization_id, employee_id)
    service = TimeTrackingService(db)
    verification = await service.verify_chain_integrity(employee_id)
    return ChainVerificationResponse.model_validate(verification)


# ============================================================================
# Work periods
# ============================================================================


@router.get(
    "/employees/{employee_id}/work-periods",
    response_model=WorkPeriodListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_work_periods(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: Annotated[UUID, Path()],
    start: Annotated[datetime, Query()],
    end: Annotated[datetime, Query()],
) -> WorkPeriodListResponse:
    """Work periods starting in ``[start, end)``."""
    await load_employee(db, organization_id, employee_id)
    service = TimeTrackingService(db)
    periods = await service.get_work_periods(employee_id, start, end)
    return WorkPeriodListResponse(
        items=[WorkPeriodResponse.model_validate(p) for p in periods],
        total=len(periods),
    )


@router.get(
    "/employees/{employee_id}/time-summary",
    response_model=TimeSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_time_summary(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: Annotated[UUID, Path()],
    start: Annotated[datetime, Query()],
    end: Annotated[datetime, Query()],
) -> TimeSummaryResponse:
    """Credited minutes over closed and final periods."""
    await load_employee(db, organization_id, employee_id)
    service = TimeTrackingService(db)
    summary = await service.time_summary(employee_id, start, end)
    return TimeSummaryResponse.model_validate(summary)


@router.post(
    "/work-periods/{work_period_id}/finalize",
    response_model=ClockEventOutcomeResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def finalize_work_period(
    db: DbSession,
    organization_id: OrganizationId,
    work_period_id: Annotated[UUID, Path()],
) -> ClockEventOutcomeResponse:
    """Retry compliance and surcharge processing for a closed period."""
    period = await db.get(WorkPeriod, work_period_id)
    if period is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Work period not found",
        )
    await load_employee(db, organization_id, period.employee_id)

    service = TimeTrackingService(db)
    outcome = await service.finalize_period(work_period_id)
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Work period is {period.status}, only closed periods can be finalized",
        )
    await db.commit()
    return _outcome_response(outcome)
