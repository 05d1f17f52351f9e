"""Employee directory reference model.

Organizations, teams and people are managed by the surrounding system;
this table mirrors just enough of its directory for the engine to scope
violations and calculations and to resolve team-level policies.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from worktime_engine.models.base import Base, TimestampMixin


class Employee(Base, TimestampMixin):
    """Employee record synced from the directory."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    team_id: Mapped[UUID | None] = mapped_column(nullable=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("employee_organization_idx", "organization_id"),
        Index("employee_team_idx", "team_id"),
    )
