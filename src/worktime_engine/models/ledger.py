"""Clock event ledger model.

Rows form one hash-linked chain per employee, ordered by ``sequence``.
Rows are never updated except for the supersede flag/pointer pair, which
is written in the same transaction that inserts the correction.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from worktime_engine.models.base import Base, TimestampMixin


class ClockEventKind(str, Enum):
    """Clock event kinds."""

    START = "start"
    STOP = "stop"
    CORRECTION = "correction"


class ClockEvent(Base, TimestampMixin):
    """A single append-only clock event."""

    __tablename__ = "clock_event"

    clock_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Chain linkage
    prior_event_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("clock_event.clock_event_id"),
        nullable=True,
    )
    prior_digest: Mapped[str | None] = mapped_column(String(64), nullable=True)
    digest: Mapped[str] = mapped_column(String(64), nullable=False)

    # Corrections
    supersedes_event_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("clock_event.clock_event_id"),
        nullable=True,
    )
    superseded: Mapped[bool] = mapped_column(nullable=False, default=False)
    superseded_by_event_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("clock_event.clock_event_id"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("employee_id", "sequence", name="clock_event_employee_sequence_unique"),
        UniqueConstraint("prior_event_id", name="clock_event_prior_unique"),
        CheckConstraint(
            "kind IN ('start', 'stop', 'correction')",
            name="clock_event_kind_check",
        ),
        CheckConstraint(
            "(kind = 'correction') = (supersedes_event_id IS NOT NULL)",
            name="clock_event_correction_pointer_check",
        ),
        Index("clock_event_employee_timestamp_idx", "employee_id", "timestamp"),
    )
