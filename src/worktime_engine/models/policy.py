"""Hierarchical policy assignment model shared by every policy family."""

from __future__ import annotations

from datetime import date
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from worktime_engine.models.base import Base, TimestampMixin


class PolicyFamily(str, Enum):
    """Policy families that reuse the assignment shape."""

    WORKING_TIME_REGULATION = "working_time_regulation"
    SURCHARGE_MODEL = "surcharge_model"
    VACATION_ALLOWANCE = "vacation_allowance"
    WORK_SCHEDULE_TEMPLATE = "work_schedule_template"
    HOLIDAY_PRESET = "holiday_preset"


class AssignmentScope(str, Enum):
    """Assignment target level."""

    ORGANIZATION = "organization"
    TEAM = "team"
    EMPLOYEE = "employee"


# Priority: 0=org, 1=team, 2=employee (higher wins)
SCOPE_PRIORITY: dict[str, int] = {
    AssignmentScope.ORGANIZATION.value: 0,
    AssignmentScope.TEAM.value: 1,
    AssignmentScope.EMPLOYEE.value: 2,
}


def _active_where(scope: str):
    return text(f"scope = '{scope}' AND is_active")


class PolicyAssignment(Base, TimestampMixin):
    """Binds a family's policy record to an organization, team or employee.

    ``policy_id`` is opaque here; each family resolves it against its own
    rule table.
    """

    __tablename__ = "policy_assignment"

    policy_assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    policy_family: Mapped[str] = mapped_column(String, nullable=False)
    policy_id: Mapped[UUID] = mapped_column(nullable=False)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    scope: Mapped[str] = mapped_column(String, nullable=False)
    team_id: Mapped[UUID | None] = mapped_column(nullable=True)
    employee_id: Mapped[UUID | None] = mapped_column(nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "policy_family IN ('working_time_regulation', 'surcharge_model', "
            "'vacation_allowance', 'work_schedule_template', 'holiday_preset')",
            name="policy_assignment_family_check",
        ),
        CheckConstraint(
            "(scope = 'organization' AND priority = 0 AND team_id IS NULL AND employee_id IS NULL) "
            "OR (scope = 'team' AND priority = 1 AND team_id IS NOT NULL AND employee_id IS NULL) "
            "OR (scope = 'employee' AND priority = 2 AND employee_id IS NOT NULL)",
            name="policy_assignment_scope_check",
        ),
        CheckConstraint(
            "effective_until IS NULL OR effective_until > effective_from",
            name="policy_assignment_dates_check",
        ),
        Index(
            "policy_assignment_org_default_idx",
            "policy_family",
            "organization_id",
            unique=True,
            postgresql_where=_active_where("organization"),
            sqlite_where=_active_where("organization"),
        ),
        Index(
            "policy_assignment_team_idx",
            "policy_family",
            "team_id",
            unique=True,
            postgresql_where=_active_where("team"),
            sqlite_where=_active_where("team"),
        ),
        Index(
            "policy_assignment_employee_idx",
            "policy_family",
            "employee_id",
            unique=True,
            postgresql_where=_active_where("employee"),
            sqlite_where=_active_where("employee"),
        ),
        Index("policy_assignment_lookup_idx", "policy_family", "organization_id", "is_active"),
    )

    def is_effective_on(self, on_date: date) -> bool:
        """Check whether ``on_date`` falls in ``[effective_from, effective_until)``."""
        if self.effective_from > on_date:
            return False
        if self.effective_until is not None and self.effective_until <= on_date:
            return False
        return True
