"""Policy definition API endpoints: assignments, regulations, surcharge models."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status
from sqlalchemy import select

from worktime_engine.api.dependencies import DbSession, OrganizationId
from worktime_engine.api.schemas import (
    ErrorResponse,
    PolicyAssignmentCreate,
    PolicyAssignmentResponse,
    PresetImport,
    PresetResponse,
    RegulationCreate,
    RegulationResponse,
    SurchargeModelCreate,
    SurchargeModelResponse,
    SurchargeRuleCreate,
    SurchargeRuleResponse,
)
from worktime_engine.calculators.presets import PRESETS
from worktime_engine.models import (
    PolicyAssignment,
    PolicyFamily,
    SurchargeModel,
    SurchargeRule,
    WorkingTimeRegulation,
)
from worktime_engine.services.policy_admin import PolicyAdminService

router = APIRouter(tags=["policies"])


def _not_found(entity: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{entity} not found",
    )


# ============================================================================
# Policy assignments
# ============================================================================


@router.post(
    "/policy-assignments",
    response_model=PolicyAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_policy_assignment(
    db: DbSession,
    organization_id: OrganizationId,
    payload: PolicyAssignmentCreate,
) -> PolicyAssignmentResponse:
    """Assign a policy at organization, team or employee scope."""
    service = PolicyAdminService(db)
    assignment = await service.define_policy_assignment(
        policy_family=payload.policy_family,
        policy_id=payload.policy_id,
        organization_id=organization_id,
        scope=payload.scope,
        effective_from=payload.effective_from,
        effective_until=payload.effective_until,
        team_id=payload.team_id,
        employee_id=payload.employee_id,
    )
    await db.commit()
    return PolicyAssignmentResponse.model_validate(assignment)


@router.get(
    "/policy-assignments",
    response_model=list[PolicyAssignmentResponse],
)
async def list_policy_assignments(
    db: DbSession,
    organization_id: OrganizationId,
    policy_family: PolicyFamily | None = None,
    active_only: Annotated[bool, Query()] = True,
) -> list[PolicyAssignmentResponse]:
    service = PolicyAdminService(db)
    assignments = await service.list_policy_assignments(
        organization_id, policy_family=policy_family, active_only=active_only
    )
    return [PolicyAssignmentResponse.model_validate(a) for a in assignments]


@router.post(
    "/policy-assignments/{policy_assignment_id}/deactivate",
    response_model=PolicyAssignmentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def deactivate_policy_assignment(
    db: DbSession,
    organization_id: OrganizationId,
    policy_assignment_id: Annotated[UUID, Path()],
) -> PolicyAssignmentResponse:
    assignment = await db.get(PolicyAssignment, policy_assignment_id)
    if assignment is None or assignment.organization_id != organization_id:
        raise _not_found("Policy assignment")

    service = PolicyAdminService(db)
    assignment = await service.deactivate_policy_assignment(policy_assignment_id)
    await db.commit()
    return PolicyAssignmentResponse.model_validate(assignment)


# ============================================================================
# Working-time regulations
# ============================================================================


@router.post(
    "/regulations",
    response_model=RegulationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_regulation(
    db: DbSession,
    organization_id: OrganizationId,
    payload: RegulationCreate,
) -> RegulationResponse:
    """Define a working-time regulation with its break rules."""
    service = PolicyAdminService(db)
    regulation = await service.define_working_time_regulation(
        organization_id=organization_id,
        name=payload.name,
        description=payload.description,
        max_daily_minutes=payload.max_daily_minutes,
        max_weekly_minutes=payload.max_weekly_minutes,
        max_uninterrupted_minutes=payload.max_uninterrupted_minutes,
        break_rules=[rule.to_spec() for rule in payload.break_rules],
    )
    await db.commit()
    return RegulationResponse.model_validate(regulation)


@router.get(
    "/regulations",
    response_model=list[RegulationResponse],
)
async def list_regulations(
    db: DbSession,
    organization_id: OrganizationId,
) -> list[RegulationResponse]:
    result = await db.execute(
        select(WorkingTimeRegulation)
        .where(WorkingTimeRegulation.organization_id == organization_id)
        .order_by(WorkingTimeRegulation.name)
    )
    return [RegulationResponse.model_validate(r) for r in result.scalars().all()]


@router.get(
    "/regulations/presets",
    response_model=list[PresetResponse],
)
async def list_presets() -> list[PresetResponse]:
    """Built-in regulation templates available for import."""
    return [PresetResponse.model_validate(p) for p in PRESETS.values()]


@router.post(
    "/regulations/presets/import",
    response_model=RegulationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def import_preset(
    db: DbSession,
    organization_id: OrganizationId,
    payload: PresetImport,
) -> RegulationResponse:
    """Copy a built-in template into the organization."""
    service = PolicyAdminService(db)
    regulation = await service.import_preset(organization_id, payload.preset_key, name=payload.name)
    await db.commit()
    return RegulationResponse.model_validate(regulation)


@router.post(
    "/regulations/{regulation_id}/deactivate",
    response_model=RegulationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def deactivate_regulation(
    db: DbSession,
    organization_id: OrganizationId,
    regulation_id: Annotated[UUID, Path()],
) -> RegulationResponse:
    regulation = await db.get(WorkingTimeRegulation, regulation_id)
    if regulation is None or regulation.organization_id != organization_id:
        raise _not_found("Regulation")

    service = PolicyAdminService(db)
    regulation = await service.deactivate_working_time_regulation(regulation_id)
    await db.commit()
    return RegulationResponse.model_validate(regulation)


# ============================================================================
# Surcharge models and rules
# ============================================================================


@router.post(
    "/surcharge-models",
    response_model=SurchargeModelResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_surcharge_model(
    db: DbSession,
    organization_id: OrganizationId,
    payload: SurchargeModelCreate,
) -> SurchargeModelResponse:
    service = PolicyAdminService(db)
    model = await service.define_surcharge_model(
        organization_id, payload.name, description=payload.description
    )
    await db.commit()
    return SurchargeModelResponse.model_validate(model)


@router.post(
    "/surcharge-models/{surcharge_model_id}/rules",
    response_model=SurchargeRuleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_surcharge_rule(
    db: DbSession,
    organization_id: OrganizationId,
    surcharge_model_id: Annotated[UUID, Path()],
    payload: SurchargeRuleCreate,
) -> SurchargeRuleResponse:
    """Add a day-of-week, time-window or date rule to a surcharge model."""
    model = await db.get(SurchargeModel, surcharge_model_id)
    if model is None or model.organization_id != organization_id:
        raise _not_found("Surcharge model")

    service = PolicyAdminService(db)
    rule = await service.define_surcharge_rule(
        surcharge_model_id,
        name=payload.name,
        rule_kind=payload.rule_kind,
        percentage=payload.percentage,
        priority=payload.priority,
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
        **payload.matcher_fields(),
    )
    await db.commit()
    return SurchargeRuleResponse.model_validate(rule)


@router.get(
    "/surcharge-models/{surcharge_model_id}/rules",
    response_model=list[SurchargeRuleResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_surcharge_rules(
    db: DbSession,
    organization_id: OrganizationId,
    surcharge_model_id: Annotated[UUID, Path()],
) -> list[SurchargeRuleResponse]:
    model = await db.get(SurchargeModel, surcharge_model_id)
    if model is None or model.organization_id != organization_id:
        raise _not_found("Surcharge model")

    result = await db.execute(
        select(SurchargeRule)
        .where(SurchargeRule.surcharge_model_id == surcharge_model_id)
        .order_by(SurchargeRule.priority.desc(), SurchargeRule.percentage.desc())
    )
    return [SurchargeRuleResponse.model_validate(r) for r in result.scalars().all()]


@router.post(
    "/surcharge-rules/{surcharge_rule_id}/deactivate",
    response_model=SurchargeRuleResponse,
    responses={404: {"model": ErrorResponse}},
)
async def deactivate_surcharge_rule(
    db: DbSession,
    organization_id: OrganizationId,
    surcharge_rule_id: Annotated[UUID, Path()],
) -> SurchargeRuleResponse:
    rule = await db.get(SurchargeRule, surcharge_rule_id)
    if rule is None:
        raise _not_found("Surcharge rule")
    model = await db.get(SurchargeModel, rule.surcharge_model_id)
    if model is None or model.organization_id != organization_id:
        raise _not_found("Surcharge rule")

    service = PolicyAdminService(db)
    rule = await service.deactivate_surcharge_rule(surcharge_rule_id)
    await db.commit()
    return SurchargeRuleResponse.model_validate(rule)
