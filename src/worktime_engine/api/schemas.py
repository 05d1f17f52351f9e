"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from worktime_engine.calculators.types import (
    AnySplitOption,
    BreakOptionSpec,
    BreakRuleSpec,
    ChainIssueType,
    FixedSplitOption,
    Severity,
)
from worktime_engine.models import AssignmentScope, PolicyFamily

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ErrorResponse(BaseModel):
    """Error body returned by exception handlers."""

    detail: str
    code: str


# ============================================================================
# Clock event schemas
# ============================================================================


class ClockEventCreate(BaseModel):
    """Schema for recording a start or stop event."""

    employee_id: UUID
    kind: Literal["start", "stop"]
    timestamp: AwareDatetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    expected_tail_id: UUID | None = None


class ClockEventCorrect(BaseModel):
    """Schema for correcting an event's timestamp."""

    new_timestamp: AwareDatetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    expected_tail_id: UUID | None = None


class ClockEventResponse(BaseModel):
    """Schema for clock event response."""

    model_config = ConfigDict(from_attributes=True)

    clock_event_id: UUID
    employee_id: UUID
    sequence: int
    kind: str
    timestamp: datetime
    metadata_json: dict[str, Any]
    prior_event_id: UUID | None = None
    prior_digest: str | None = None
    digest: str
    supersedes_event_id: UUID | None = None
    superseded: bool
    superseded_by_event_id: UUID | None = None
    created_at: datetime


class WorkPeriodResponse(BaseModel):
    """Schema for work period response."""

    model_config = ConfigDict(from_attributes=True)

    work_period_id: UUID
    employee_id: UUID
    start_event_id: UUID
    stop_event_id: UUID | None = None
    start_time: datetime
    end_time: datetime | None = None
    credited_duration_minutes: int | None = None
    status: str
    was_adjusted: bool
    adjustment_reason: dict[str, Any] | None = None
    original_end_time: datetime | None = None
    original_duration_minutes: int | None = None


class WorkPeriodListResponse(BaseModel):
    items: list[WorkPeriodResponse]
    total: int


class TimeSummaryResponse(BaseModel):
    """Credited time over a range."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    start: datetime
    end: datetime
    total_minutes: int
    period_count: int
    average_minutes: int


class ChainIssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    issue_type: ChainIssueType
    event_id: UUID
    index: int
    expected: str | None = None
    actual: str | None = None


class ChainVerificationResponse(BaseModel):
    """Schema for chain verification results."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    total_events: int
    valid_events: int
    is_valid: bool
    chain_digest: str | None = None
    issues: list[ChainIssueResponse]


# ============================================================================
# Compliance schemas
# ============================================================================


class ViolationResponse(BaseModel):
    """Schema for compliance violation response."""

    model_config = ConfigDict(from_attributes=True)

    violation_id: UUID
    employee_id: UUID
    organization_id: UUID
    regulation_id: UUID | None = None
    work_period_id: UUID | None = None
    violation_date: date
    kind: str
    details: dict[str, Any]
    acknowledged_by: UUID | None = None
    acknowledged_at: datetime | None = None
    acknowledged_note: str | None = None
    created_at: datetime


class ViolationListResponse(BaseModel):
    items: list[ViolationResponse]
    total: int


class AcknowledgeRequest(BaseModel):
    """Schema for acknowledging a violation."""

    acknowledged_by: UUID
    note: str | None = None


class ComplianceEvaluateRequest(BaseModel):
    employee_id: UUID
    on_date: date


class ComplianceResultResponse(BaseModel):
    """Schema for a persisted compliance evaluation."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    on_date: date
    regulation_id: UUID | None = None
    is_compliant: bool
    adjusted_periods: list[WorkPeriodResponse]
    violations: list[ViolationResponse]


class ComplianceWarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    message: str
    actual_minutes: int
    limit_minutes: int
    severity: Severity


class BreakRequirementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_required: bool
    total_break_needed: int
    break_taken: int
    break_counted: int
    remaining: int
    split_options: list[str]


class ComplianceCheckResponse(BaseModel):
    """Schema for the live (non-persisted) compliance check."""

    employee_id: UUID
    regulation_name: str | None = None
    is_compliant: bool
    warnings: list[ComplianceWarningResponse]
    break_requirement: BreakRequirementResponse | None = None


# ============================================================================
# Policy schemas
# ============================================================================


class FixedSplitOptionSchema(BaseModel):
    type: Literal["fixed"] = "fixed"
    split_count: int = Field(ge=1)
    minimum_split_minutes: int = Field(ge=0)

    def to_spec(self) -> BreakOptionSpec:
        return FixedSplitOption(self.split_count, self.minimum_split_minutes)


class AnySplitOptionSchema(BaseModel):
    type: Literal["any"] = "any"
    minimum_longest_split_minutes: int = Field(default=0, ge=0)

    def to_spec(self) -> BreakOptionSpec:
        return AnySplitOption(self.minimum_longest_split_minutes)


BreakOptionSchema = Annotated[
    Union[FixedSplitOptionSchema, AnySplitOptionSchema],
    Field(discriminator="type"),
]


class BreakRuleSchema(BaseModel):
    threshold_minutes: int = Field(ge=0)
    required_break_minutes: int = Field(gt=0)
    options: list[BreakOptionSchema] = Field(default_factory=list)

    def to_spec(self) -> BreakRuleSpec:
        return BreakRuleSpec(
            threshold_minutes=self.threshold_minutes,
            required_break_minutes=self.required_break_minutes,
            options=tuple(o.to_spec() for o in self.options),
        )


class RegulationCreate(BaseModel):
    """Schema for defining a working-time regulation."""

    name: str = Field(min_length=1)
    description: str | None = None
    max_daily_minutes: int | None = Field(default=None, gt=0)
    max_weekly_minutes: int | None = Field(default=None, gt=0)
    max_uninterrupted_minutes: int | None = Field(default=None, gt=0)
    break_rules: list[BreakRuleSchema] = Field(default_factory=list)


class BreakOptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    split_count: int | None = None
    minimum_split_minutes: int | None = None
    minimum_longest_split_minutes: int | None = None


class BreakRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    break_rule_id: UUID
    threshold_minutes: int
    required_break_minutes: int
    options: list[BreakOptionResponse]


class RegulationResponse(BaseModel):
    """Schema for working-time regulation response."""

    model_config = ConfigDict(from_attributes=True)

    regulation_id: UUID
    organization_id: UUID
    name: str
    description: str | None = None
    max_daily_minutes: int | None = None
    max_weekly_minutes: int | None = None
    max_uninterrupted_minutes: int | None = None
    is_active: bool
    break_rules: list[BreakRuleResponse]


class PresetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    name: str
    description: str
    country_code: str | None = None


class PresetImport(BaseModel):
    preset_key: str
    name: str | None = None


class PolicyAssignmentCreate(BaseModel):
    """Schema for assigning a policy at organization, team or employee scope."""

    policy_family: PolicyFamily
    policy_id: UUID
    scope: AssignmentScope
    team_id: UUID | None = None
    employee_id: UUID | None = None
    effective_from: date
    effective_until: date | None = None


class PolicyAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    policy_assignment_id: UUID
    policy_family: str
    policy_id: UUID
    organization_id: UUID
    scope: str
    team_id: UUID | None = None
    employee_id: UUID | None = None
    priority: int
    effective_from: date
    effective_until: date | None = None
    is_active: bool
    created_at: datetime


class SurchargeModelCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None


class SurchargeModelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    surcharge_model_id: UUID
    organization_id: UUID
    name: str
    description: str | None = None
    is_active: bool


class DayOfWeekMatcherSchema(BaseModel):
    kind: Literal["day_of_week"] = "day_of_week"
    day_of_week: Literal[
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"
    ]


class TimeWindowMatcherSchema(BaseModel):
    kind: Literal["time_window"] = "time_window"
    start: str = Field(pattern=HHMM_PATTERN)
    end: str = Field(pattern=HHMM_PATTERN)


class DateMatcherSchema(BaseModel):
    kind: Literal["date_based"] = "date_based"
    specific_date: date | None = None
    date_range_start: date | None = None
    date_range_end: date | None = None

    @model_validator(mode="after")
    def check_dates(self) -> "DateMatcherSchema":
        has_range = self.date_range_start is not None or self.date_range_end is not None
        if self.specific_date is not None and has_range:
            raise ValueError("specific_date cannot be combined with a date range")
        if self.specific_date is None and (
            self.date_range_start is None or self.date_range_end is None
        ):
            raise ValueError("Provide specific_date or both date_range_start and date_range_end")
        return self


MatcherSchema = Annotated[
    Union[DayOfWeekMatcherSchema, TimeWindowMatcherSchema, DateMatcherSchema],
    Field(discriminator="kind"),
]


class SurchargeRuleCreate(BaseModel):
    """Schema for adding a rule to a surcharge model."""

    name: str = Field(min_length=1)
    percentage: Decimal = Field(ge=0)
    priority: int = 0
    valid_from: AwareDatetime | None = None
    valid_until: AwareDatetime | None = None
    matcher: MatcherSchema

    @property
    def rule_kind(self) -> str:
        return self.matcher.kind

    def matcher_fields(self) -> dict[str, Any]:
        """Flatten the matcher into rule columns."""
        matcher = self.matcher
        if isinstance(matcher, DayOfWeekMatcherSchema):
            return {"day_of_week": matcher.day_of_week}
        if isinstance(matcher, TimeWindowMatcherSchema):
            return {"window_start_time": matcher.start, "window_end_time": matcher.end}
        return {
            "specific_date": matcher.specific_date,
            "date_range_start": matcher.date_range_start,
            "date_range_end": matcher.date_range_end,
        }


class SurchargeRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    surcharge_rule_id: UUID
    surcharge_model_id: UUID
    name: str
    rule_kind: str
    percentage: Decimal
    priority: int
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool
    day_of_week: str | None = None
    window_start_time: str | None = None
    window_end_time: str | None = None
    specific_date: date | None = None
    date_range_start: date | None = None
    date_range_end: date | None = None


# ============================================================================
# Surcharge calculation schemas
# ============================================================================


class SurchargeCalculationResponse(BaseModel):
    """Schema for an immutable surcharge calculation."""

    model_config = ConfigDict(from_attributes=True)

    surcharge_calculation_id: UUID
    employee_id: UUID
    organization_id: UUID
    work_period_id: UUID
    surcharge_rule_id: UUID | None = None
    surcharge_model_id: UUID | None = None
    calculation_date: date
    base_minutes: int
    qualifying_minutes: int
    surcharge_minutes: int
    total_credited_minutes: int
    applied_percentage: Decimal
    calculation_details: dict[str, Any]
    overlap_policy: str
    engine_version: str
    created_at: datetime


class SurchargeSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    start: date
    end: date
    calculation_count: int
    base_minutes: int
    qualifying_minutes: int
    surcharge_minutes: int
    total_credited_minutes: int
    by_rule_kind: dict[str, dict[str, int]]


class ClockEventOutcomeResponse(BaseModel):
    """Everything a clock event or correction produced."""

    event: ClockEventResponse
    work_period: WorkPeriodResponse | None = None
    violations: list[ViolationResponse] = Field(default_factory=list)
    surcharge: SurchargeCalculationResponse | None = None
    stale_surcharge: bool = False
    stale_calculations: list[SurchargeCalculationResponse] = Field(default_factory=list)
