"""Work period model derived from start/stop clock events."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from worktime_engine.models.base import Base, TimestampMixin


class WorkPeriod(Base, TimestampMixin):
    """Interval between a start event and its matching stop event.

    ``credited_duration_minutes`` and ``end_time`` may be shrunk by the
    compliance engine; the pre-adjustment values are kept in
    ``original_end_time`` / ``original_duration_minutes`` from the first
    adjustment onward. Rows are never deleted.
    """

    __tablename__ = "work_period"

    work_period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    start_event_id: Mapped[UUID] = mapped_column(
        ForeignKey("clock_event.clock_event_id"),
        nullable=False,
    )
    stop_event_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("clock_event.clock_event_id"),
        nullable=True,
    )
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(nullable=True)
    credited_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="open")

    # Compliance adjustment trail
    was_adjusted: Mapped[bool] = mapped_column(nullable=False, default=False)
    adjustment_reason: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    original_end_time: Mapped[datetime | None] = mapped_column(nullable=True)
    original_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'closed', 'final')",
            name="work_period_status_check",
        ),
        CheckConstraint(
            "end_time IS NULL OR end_time >= start_time",
            name="work_period_dates_check",
        ),
        CheckConstraint(
            "original_duration_minutes IS NULL "
            "OR credited_duration_minutes <= original_duration_minutes",
            name="work_period_credit_shrinks_check",
        ),
        Index("work_period_employee_start_idx", "employee_id", "start_time"),
        Index("work_period_status_idx", "employee_id", "status"),
        Index(
            "work_period_one_open_idx",
            "employee_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        """True while the period is open."""
        return self.status == "open"

    @property
    def raw_end_time(self) -> datetime | None:
        """Stop instant before any compliance adjustment."""
        return self.original_end_time if self.was_adjusted else self.end_time

    @property
    def raw_duration_minutes(self) -> int | None:
        """Duration between start and stop before any compliance adjustment."""
        if self.was_adjusted:
            return self.original_duration_minutes
        return self.credited_duration_minutes
