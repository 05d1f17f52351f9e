"""Working-time regulation models: limits, break rules and split options."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktime_engine.models.base import Base, TimestampMixin


class WorkingTimeRegulation(Base, TimestampMixin):
    """Statutory working-time limits for an organization."""

    __tablename__ = "working_time_regulation"

    regulation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)

    # Limits in minutes, None = unlimited
    max_daily_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_weekly_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_uninterrupted_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="working_time_regulation_org_name_unique"),
        CheckConstraint(
            "max_daily_minutes IS NULL OR max_daily_minutes > 0",
            name="working_time_regulation_daily_check",
        ),
        CheckConstraint(
            "max_weekly_minutes IS NULL OR max_weekly_minutes > 0",
            name="working_time_regulation_weekly_check",
        ),
        CheckConstraint(
            "max_uninterrupted_minutes IS NULL OR max_uninterrupted_minutes > 0",
            name="working_time_regulation_uninterrupted_check",
        ),
    )

    break_rules: Mapped[list[BreakRule]] = relationship(
        back_populates="regulation",
        order_by="BreakRule.sort_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class BreakRule(Base):
    """After ``threshold_minutes`` worked, ``required_break_minutes`` of break are due."""

    __tablename__ = "break_rule"

    break_rule_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    regulation_id: Mapped[UUID] = mapped_column(
        ForeignKey("working_time_regulation.regulation_id", ondelete="CASCADE"),
        nullable=False,
    )
    threshold_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    required_break_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("threshold_minutes >= 0", name="break_rule_threshold_check"),
        CheckConstraint("required_break_minutes > 0", name="break_rule_required_check"),
        Index("break_rule_regulation_idx", "regulation_id", "sort_order"),
    )

    regulation: Mapped[WorkingTimeRegulation] = relationship(back_populates="break_rules")
    options: Mapped[list[BreakOption]] = relationship(
        back_populates="break_rule",
        order_by="BreakOption.sort_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class BreakOption(Base):
    """One acceptable way of splitting a required break.

    Either ``split_count`` is set (fixed number of parts, each at least
    ``minimum_split_minutes``) or it is NULL and
    ``minimum_longest_split_minutes`` sets the floor for the longest part.
    """

    __tablename__ = "break_option"

    break_option_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    break_rule_id: Mapped[UUID] = mapped_column(
        ForeignKey("break_rule.break_rule_id", ondelete="CASCADE"),
        nullable=False,
    )
    split_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    minimum_split_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    minimum_longest_split_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "(split_count IS NOT NULL AND split_count > 0 AND minimum_longest_split_minutes IS NULL) "
            "OR (split_count IS NULL AND minimum_split_minutes IS NULL)",
            name="break_option_shape_check",
        ),
    )

    break_rule: Mapped[BreakRule] = relationship(back_populates="options")
