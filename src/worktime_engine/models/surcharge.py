"""Surcharge model, rule and calculation records."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktime_engine.models.base import Base, TimestampMixin


class SurchargeRuleKind(str, Enum):
    """Surcharge rule matcher kinds."""

    DAY_OF_WEEK = "day_of_week"
    TIME_WINDOW = "time_window"
    DATE_BASED = "date_based"


class SurchargeModel(Base, TimestampMixin):
    """Named set of surcharge rules for an organization."""

    __tablename__ = "surcharge_model"

    surcharge_model_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="surcharge_model_org_name_unique"),
    )

    rules: Mapped[list[SurchargeRule]] = relationship(
        back_populates="model",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SurchargeRule(Base, TimestampMixin):
    """A premium percentage applied to time matching the rule's matcher."""

    __tablename__ = "surcharge_rule"

    surcharge_rule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    surcharge_model_id: Mapped[UUID] = mapped_column(
        ForeignKey("surcharge_model.surcharge_model_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    rule_kind: Mapped[str] = mapped_column(String, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_from: Mapped[datetime | None] = mapped_column(nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    # day_of_week
    day_of_week: Mapped[str | None] = mapped_column(String, nullable=True)
    # time_window, "HH:MM"
    window_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    window_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    # date_based
    specific_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_range_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_range_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "rule_kind IN ('day_of_week', 'time_window', 'date_based')",
            name="surcharge_rule_kind_check",
        ),
        CheckConstraint("percentage >= 0", name="surcharge_rule_percentage_check"),
        Index("surcharge_rule_model_idx", "surcharge_model_id", "priority"),
    )

    model: Mapped[SurchargeModel] = relationship(back_populates="rules")


class SurchargeCalculation(Base, TimestampMixin):
    """Immutable premium calculation for exactly one work period.

    No ``updated_at``: recomputation is an explicit delete followed by a
    fresh insert.
    """

    __tablename__ = "surcharge_calculation"

    surcharge_calculation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    work_period_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_period.work_period_id", ondelete="RESTRICT"),
        nullable=False,
    )
    surcharge_rule_id: Mapped[UUID | None] = mapped_column(nullable=True)
    surcharge_model_id: Mapped[UUID | None] = mapped_column(nullable=True)
    calculation_date: Mapped[date] = mapped_column(Date, nullable=False)
    base_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    qualifying_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    surcharge_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    applied_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    calculation_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    overlap_policy: Mapped[str] = mapped_column(String, nullable=False, default="max_wins")
    engine_version: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("work_period_id", name="surcharge_calculation_work_period_unique"),
        CheckConstraint("qualifying_minutes <= base_minutes", name="surcharge_calculation_minutes_check"),
        Index("surcharge_calculation_emp_date_idx", "employee_id", "calculation_date"),
    )

    @property
    def total_credited_minutes(self) -> int:
        return self.base_minutes + self.surcharge_minutes
