"""Compliance evaluation and violation API endpoints."""

from datetime import date, datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status

from worktime_engine.api.dependencies import DbSession, OrganizationId, load_employee
from worktime_engine.api.schemas import (
    AcknowledgeRequest,
    BreakRequirementResponse,
    ComplianceCheckResponse,
    ComplianceEvaluateRequest,
    ComplianceResultResponse,
    ComplianceWarningResponse,
    ErrorResponse,
    ViolationListResponse,
    ViolationResponse,
)
from worktime_engine.models import ComplianceViolation, ViolationKind
from worktime_engine.services.compliance_engine import ComplianceEngine

router = APIRouter(prefix="/compliance", tags=["compliance"])


@router.post(
    "/evaluate",
    response_model=ComplianceResultResponse,
    responses={404: {"model": ErrorResponse}},
)
async def evaluate_day(
    db: DbSession,
    organization_id: OrganizationId,
    payload: ComplianceEvaluateRequest,
) -> ComplianceResultResponse:
    """Evaluate an employee-day and persist adjustments and violations."""
    await load_employee(db, organization_id, payload.employee_id)

    engine = ComplianceEngine(db)
    result = await engine.evaluate(payload.employee_id, payload.on_date)
    await db.commit()
    return ComplianceResultResponse.model_validate(result)


@router.get(
    "/check/{employee_id}",
    response_model=ComplianceCheckResponse,
    responses={404: {"model": ErrorResponse}},
)
async def check_session(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: Annotated[UUID, Path()],
    at: Annotated[datetime | None, Query()] = None,
) -> ComplianceCheckResponse:
    """Live check of the running day; nothing is written."""
    await load_employee(db, organization_id, employee_id)

    engine = ComplianceEngine(db)
    check = await engine.check_session(employee_id, at or datetime.now(timezone.utc))
    return ComplianceCheckResponse(
        employee_id=check.employee_id,
        regulation_name=check.regulation.name if check.regulation is not None else None,
        is_compliant=check.is_compliant,
        warnings=[ComplianceWarningResponse.model_validate(w) for w in check.warnings],
        break_requirement=(
            BreakRequirementResponse.model_validate(check.break_requirement)
            if check.break_requirement is not None
            else None
        ),
    )


@router.get(
    "/violations",
    response_model=ViolationListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_violations(
    db: DbSession,
    organization_id: OrganizationId,
    employee_id: UUID | None = None,
    start: date | None = None,
    end: date | None = None,
    kind: ViolationKind | None = None,
    acknowledged: bool | None = None,
) -> ViolationListResponse:
    """Violations for the organization, optionally narrowed to one employee."""
    if employee_id is not None:
        await load_employee(db, organization_id, employee_id)

    engine = ComplianceEngine(db)
    violations = await engine.get_violations(
        employee_id=employee_id,
        organization_id=organization_id,
        start=start,
        end=end,
        kind=kind,
        acknowledged=acknowledged,
    )
    return ViolationListResponse(
        items=[ViolationResponse.model_validate(v) for v in violations],
        total=len(violations),
    )


@router.post(
    "/violations/{violation_id}/acknowledge",
    response_model=ViolationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def acknowledge_violation(
    db: DbSession,
    organization_id: OrganizationId,
    violation_id: Annotated[UUID, Path()],
    payload: AcknowledgeRequest,
) -> ViolationResponse:
    violation = await db.get(ComplianceViolation, violation_id)
    if violation is None or violation.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Violation not found",
        )

    engine = ComplianceEngine(db)
    violation = await engine.acknowledge_violation(
        violation_id, payload.acknowledged_by, note=payload.note
    )
    await db.commit()
    return ViolationResponse.model_validate(violation)
