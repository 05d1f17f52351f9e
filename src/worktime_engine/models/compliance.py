"""Compliance violation log model."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from worktime_engine.models.base import Base, TimestampMixin


class ViolationKind(str, Enum):
    """Compliance violation kinds."""

    MAX_DAILY = "max_daily"
    MAX_WEEKLY = "max_weekly"
    MAX_UNINTERRUPTED = "max_uninterrupted"
    BREAK_REQUIRED = "break_required"


class ComplianceViolation(Base, TimestampMixin):
    """A recorded breach of a working-time regulation.

    Never deleted; acknowledgment is the only permitted mutation.
    """

    __tablename__ = "compliance_violation"

    violation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    regulation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("working_time_regulation.regulation_id", ondelete="SET NULL"),
        nullable=True,
    )
    work_period_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("work_period.work_period_id", ondelete="SET NULL"),
        nullable=True,
    )
    violation_date: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Acknowledgment
    acknowledged_by: Mapped[UUID | None] = mapped_column(nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(nullable=True)
    acknowledged_note: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "kind IN ('max_daily', 'max_weekly', 'max_uninterrupted', 'break_required')",
            name="compliance_violation_kind_check",
        ),
        Index("compliance_violation_emp_date_idx", "employee_id", "violation_date"),
        Index("compliance_violation_org_date_idx", "organization_id", "violation_date"),
        Index("compliance_violation_kind_idx", "kind"),
    )

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None
