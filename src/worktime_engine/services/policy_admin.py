"""Definition of policy assignments, regulations and surcharge rules."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.calculators.presets import PRESETS
from worktime_engine.calculators.surcharge_partition import matcher_from_model
from worktime_engine.calculators.types import (
    AnySplitOption,
    BreakRuleSpec,
    FixedSplitOption,
)
from worktime_engine.exceptions import InvalidPolicyDefinition, NotFoundError
from worktime_engine.models import (
    SCOPE_PRIORITY,
    AssignmentScope,
    BreakOption,
    BreakRule,
    PolicyAssignment,
    PolicyFamily,
    SurchargeModel,
    SurchargeRule,
    SurchargeRuleKind,
    WorkingTimeRegulation,
)

logger = logging.getLogger(__name__)


class PolicyAdminService:
    """Validates and stores policy definitions supplied by collaborators.

    Definitions are checked once here; downstream components only ever
    see validated rows.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def define_policy_assignment(
        self,
        policy_family: PolicyFamily | str,
        policy_id: UUID,
        organization_id: UUID,
        scope: AssignmentScope | str,
        effective_from: date,
        effective_until: date | None = None,
        team_id: UUID | None = None,
        employee_id: UUID | None = None,
    ) -> PolicyAssignment:
        """Bind a policy to an organization, team or employee.

        Priority is derived from the scope. At most one active assignment
        per family may exist at each organization, team and employee.
        """
        try:
            family = PolicyFamily(policy_family)
            scope_value = AssignmentScope(scope)
        except ValueError as exc:
            raise InvalidPolicyDefinition(str(exc)) from exc

        if scope_value == AssignmentScope.ORGANIZATION and (team_id or employee_id):
            raise InvalidPolicyDefinition("Organization assignments take no team or employee")
        if scope_value == AssignmentScope.TEAM and (team_id is None or employee_id is not None):
            raise InvalidPolicyDefinition("Team assignments need a team_id and no employee_id")
        if scope_value == AssignmentScope.EMPLOYEE and employee_id is None:
            raise InvalidPolicyDefinition("Employee assignments need an employee_id")
        if effective_until is not None and effective_until <= effective_from:
            raise InvalidPolicyDefinition("effective_until must be after effective_from")

        await self._check_policy_exists(family, policy_id, organization_id)

        assignment = PolicyAssignment(
            policy_family=family.value,
            policy_id=policy_id,
            organization_id=organization_id,
            scope=scope_value.value,
            team_id=team_id if scope_value == AssignmentScope.TEAM else None,
            employee_id=employee_id if scope_value == AssignmentScope.EMPLOYEE else None,
            priority=SCOPE_PRIORITY[scope_value.value],
            effective_from=effective_from,
            effective_until=effective_until,
            is_active=True,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(assignment)
                await self.session.flush()
        except IntegrityError as exc:
            raise InvalidPolicyDefinition(
                f"An active {family.value} assignment already exists at {scope_value.value} scope; "
                "deactivate it first"
            ) from exc

        logger.info(
            "Assigned %s policy %s at %s scope (assignment %s, from %s)",
            family.value,
            policy_id,
            scope_value.value,
            assignment.policy_assignment_id,
            effective_from,
        )
        return assignment

    async def _check_policy_exists(
        self,
        family: PolicyFamily,
        policy_id: UUID,
        organization_id: UUID,
    ) -> None:
        # Other families keep their rule records outside this engine
        model = {
            PolicyFamily.WORKING_TIME_REGULATION: WorkingTimeRegulation,
            PolicyFamily.SURCHARGE_MODEL: SurchargeModel,
        }.get(family)
        if model is None:
            return
        record = await self.session.get(model, policy_id)
        if record is None:
            raise NotFoundError(model.__name__, policy_id)
        if record.organization_id != organization_id:
            raise InvalidPolicyDefinition(
                f"{model.__name__} {policy_id} belongs to a different organization"
            )

    async def deactivate_policy_assignment(self, policy_assignment_id: UUID) -> PolicyAssignment:
        """Deactivate an assignment; the row is kept for history."""
        assignment = await self.session.get(PolicyAssignment, policy_assignment_id)
        if assignment is None:
            raise NotFoundError("PolicyAssignment", policy_assignment_id)
        assignment.is_active = False
        await self.session.flush()
        logger.info("Deactivated policy assignment %s", policy_assignment_id)
        return assignment

    async def list_policy_assignments(
        self,
        organization_id: UUID,
        policy_family: PolicyFamily | str | None = None,
        active_only: bool = True,
    ) -> list[PolicyAssignment]:
        query = select(PolicyAssignment).where(PolicyAssignment.organization_id == organization_id)
        if policy_family is not None:
            query = query.where(PolicyAssignment.policy_family == PolicyFamily(policy_family).value)
        if active_only:
            query = query.where(PolicyAssignment.is_active.is_(True))
        result = await self.session.execute(
            query.order_by(PolicyAssignment.priority, PolicyAssignment.effective_from)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Working-time regulations
    # ------------------------------------------------------------------

    async def define_working_time_regulation(
        self,
        organization_id: UUID,
        name: str,
        description: str | None = None,
        max_daily_minutes: int | None = None,
        max_weekly_minutes: int | None = None,
        max_uninterrupted_minutes: int | None = None,
        break_rules: Sequence[BreakRuleSpec] = (),
    ) -> WorkingTimeRegulation:
        """Store a regulation with its break rules and split options."""
        for label, value in (
            ("max_daily_minutes", max_daily_minutes),
            ("max_weekly_minutes", max_weekly_minutes),
            ("max_uninterrupted_minutes", max_uninterrupted_minutes),
        ):
            if value is not None and value <= 0:
                raise InvalidPolicyDefinition(f"{label} must be positive")

        thresholds = [r.threshold_minutes for r in break_rules]
        if len(set(thresholds)) != len(thresholds):
            raise InvalidPolicyDefinition("Break rule thresholds must be unique")

        regulation = WorkingTimeRegulation(
            organization_id=organization_id,
            name=name,
            description=description,
            max_daily_minutes=max_daily_minutes,
            max_weekly_minutes=max_weekly_minutes,
            max_uninterrupted_minutes=max_uninterrupted_minutes,
            is_active=True,
            break_rules=[
                _build_break_rule(rule, index)
                for index, rule in enumerate(sorted(break_rules, key=lambda r: r.threshold_minutes))
            ],
        )
        try:
            async with self.session.begin_nested():
                self.session.add(regulation)
                await self.session.flush()
        except IntegrityError as exc:
            raise InvalidPolicyDefinition(
                f"A regulation named {name!r} already exists in this organization"
            ) from exc

        logger.info(
            "Defined working-time regulation %s (%s) with %d break rule(s)",
            regulation.regulation_id,
            name,
            len(break_rules),
        )
        return regulation

    async def import_preset(
        self,
        organization_id: UUID,
        preset_key: str,
        name: str | None = None,
    ) -> WorkingTimeRegulation:
        """Copy a built-in preset into the organization as a regulation."""
        preset = PRESETS.get(preset_key)
        if preset is None:
            raise NotFoundError("RegulationPreset", preset_key)
        return await self.define_working_time_regulation(
            organization_id=organization_id,
            name=name or preset.name,
            description=preset.description,
            max_daily_minutes=preset.max_daily_minutes,
            max_weekly_minutes=preset.max_weekly_minutes,
            max_uninterrupted_minutes=preset.max_uninterrupted_minutes,
            break_rules=preset.break_rules,
        )

    async def deactivate_working_time_regulation(self, regulation_id: UUID) -> WorkingTimeRegulation:
        regulation = await self.session.get(WorkingTimeRegulation, regulation_id)
        if regulation is None:
            raise NotFoundError("WorkingTimeRegulation", regulation_id)
        regulation.is_active = False
        await self.session.flush()
        return regulation

    # ------------------------------------------------------------------
    # Surcharge models and rules
    # ------------------------------------------------------------------

    async def define_surcharge_model(
        self,
        organization_id: UUID,
        name: str,
        description: str | None = None,
    ) -> SurchargeModel:
        model = SurchargeModel(
            organization_id=organization_id,
            name=name,
            description=description,
            is_active=True,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(model)
                await self.session.flush()
        except IntegrityError as exc:
            raise InvalidPolicyDefinition(
                f"A surcharge model named {name!r} already exists in this organization"
            ) from exc

        logger.info("Defined surcharge model %s (%s)", model.surcharge_model_id, name)
        return model

    async def define_surcharge_rule(
        self,
        surcharge_model_id: UUID,
        name: str,
        rule_kind: SurchargeRuleKind | str,
        percentage: Decimal,
        priority: int = 0,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        day_of_week: str | None = None,
        window_start_time: str | None = None,
        window_end_time: str | None = None,
        specific_date: date | None = None,
        date_range_start: date | None = None,
        date_range_end: date | None = None,
    ) -> SurchargeRule:
        """Add a rule to a model after validating its matcher fields.

        Ties in priority are broken by percentage, then rule id.
        """
        model = await self.session.get(SurchargeModel, surcharge_model_id)
        if model is None:
            raise NotFoundError("SurchargeModel", surcharge_model_id)

        try:
            kind = SurchargeRuleKind(rule_kind)
        except ValueError as exc:
            raise InvalidPolicyDefinition(str(exc)) from exc

        percentage = Decimal(str(percentage))
        if percentage < 0:
            raise InvalidPolicyDefinition("Surcharge percentage cannot be negative")
        if valid_from is not None and valid_until is not None and valid_until <= valid_from:
            raise InvalidPolicyDefinition("valid_until must be after valid_from")

        rule = SurchargeRule(
            surcharge_model_id=surcharge_model_id,
            name=name,
            rule_kind=kind.value,
            percentage=percentage,
            priority=priority,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=True,
            day_of_week=day_of_week.lower() if day_of_week else None,
            window_start_time=window_start_time,
            window_end_time=window_end_time,
            specific_date=specific_date,
            date_range_start=date_range_start,
            date_range_end=date_range_end,
        )
        matcher_from_model(rule)

        self.session.add(rule)
        await self.session.flush()

        logger.info(
            "Defined surcharge rule %s (%s, %s%%) on model %s",
            rule.surcharge_rule_id,
            kind.value,
            percentage * 100,
            surcharge_model_id,
        )
        return rule

    async def deactivate_surcharge_rule(self, surcharge_rule_id: UUID) -> SurchargeRule:
        rule = await self.session.get(SurchargeRule, surcharge_rule_id)
        if rule is None:
            raise NotFoundError("SurchargeRule", surcharge_rule_id)
        rule.is_active = False
        await self.session.flush()
        return rule


def _build_break_rule(spec: BreakRuleSpec, sort_order: int) -> BreakRule:
    if spec.threshold_minutes < 0:
        raise InvalidPolicyDefinition("Break rule threshold cannot be negative")
    if spec.required_break_minutes <= 0:
        raise InvalidPolicyDefinition("Required break minutes must be positive")

    options = []
    for index, option in enumerate(spec.options):
        if isinstance(option, FixedSplitOption):
            if option.split_count <= 0:
                raise InvalidPolicyDefinition("split_count must be positive")
            if option.minimum_split_minutes < 0:
                raise InvalidPolicyDefinition("minimum_split_minutes cannot be negative")
            options.append(
                BreakOption(
                    split_count=option.split_count,
                    minimum_split_minutes=option.minimum_split_minutes,
                    sort_order=index,
                )
            )
        elif isinstance(option, AnySplitOption):
            if option.minimum_longest_split_minutes < 0:
                raise InvalidPolicyDefinition("minimum_longest_split_minutes cannot be negative")
            options.append(
                BreakOption(
                    minimum_longest_split_minutes=option.minimum_longest_split_minutes,
                    sort_order=index,
                )
            )
        else:
            raise InvalidPolicyDefinition(f"Unsupported break option {option!r}")

    return BreakRule(
        threshold_minutes=spec.threshold_minutes,
        required_break_minutes=spec.required_break_minutes,
        sort_order=sort_order,
        options=options,
    )
