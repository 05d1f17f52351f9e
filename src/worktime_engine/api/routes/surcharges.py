"""Surcharge calculation API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.api.dependencies import DbSession, OrganizationId, load_employee
from worktime_engine.api.schemas import (
    ErrorResponse,
    SurchargeCalculationResponse,
    SurchargeSummaryResponse,
)
from worktime_engine.models import WorkPeriod
from worktime_engine.services.surcharge_calculator import SurchargeCalculator

router = APIRouter(tags=["surcharges"])


async def _load_period(db: AsyncSession, organization_id: UUID, work_period_id: UUID) -> WorkPeriod:
    period = await db.get(WorkPeriod, work_period_id)
    if period is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Work period not found",
        )
    await load_employee(db, organization_id, period.employee_id)
    return period


@router.post(
    "/work-periods/{work_period_id}/surcharges",
    response_model=SurchargeCalculationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def calculate_surcharges(
    db: DbSession,
    organization_id: OrganizationId,
    work_period_id: Annotated[UUID, Path()],
) -> SurchargeCalculationResponse:
    """Calculate, or return the stored, surcharge calculation for a final period."""
    await _load_period(db, organization_id, work_period_id)

    calculator = SurchargeCalculator(db)
    calculation = await calculator.calculate(work_period_id)
    await db.commit()
    return SurchargeCalculationResponse.model_validate(calculation)


@router.get(
    "/work-periods/{work_period_id}/surcharges",
    response_model=SurchargeCalculationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_surcharges(
    db: DbSession,
    organization_id: OrganizationId,
    work_period_id: Annotated[UUID, Path()],
) -> SurchargeCalculationResponse:
    await _load_period(db, organization_id, work_period_id)

    calculator = SurchargeCalculator(db)
    calculation = await calculator.get_calculation(work_period_id)
    if calculation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Surcharge calculation not found",
        )
    return SurchargeCalculationResponse.model_validate(calculation)


@router.delete(
    "/work-periods/{work_period_id}/surcharges",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_surcharges(
    db: DbSession,
    organization_id: OrganizationId,
    work_period_id: Annotated[UUID, Path()],
) -> None:
    """Delete a stored calculation so it can be recomputed."""
    await _load_period(db, organization_id, work_period_id)

    calculator = SurchargeCalculator(db)
    await calculator.delete_calculation(work_period_id)
    await db.commit()


@router.get(
    "/employees/{employee_id}/surcharge-summary",
    response_model=SurchargeSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_surcharge_summary(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: Annotated[UUID, Path()],
    start: Annotated[date, Query()],
    end: Annotated[date, Query()],
) -> SurchargeSummaryResponse:
    await load_employee(db, organization_id, employee_id)

    calculator = SurchargeCalculator(db)
    summary = await calculator.surcharge_summary(employee_id, start, end)
    return SurchargeSummaryResponse.model_validate(summary)
