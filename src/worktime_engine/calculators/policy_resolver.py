"""Hierarchical policy resolution shared by every policy family."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from worktime_engine.models import (
    SCOPE_PRIORITY,
    AssignmentScope,
    Employee,
    PolicyAssignment,
    PolicyFamily,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ResolvedPolicy(Generic[T]):
    """A winning assignment together with the family's payload."""

    assignment: PolicyAssignment
    payload: T

    @property
    def scope(self) -> str:
        return self.assignment.scope


def _matches_subject(
    assignment: PolicyAssignment,
    employee_id: UUID | None,
    team_id: UUID | None,
) -> bool:
    if assignment.scope == AssignmentScope.EMPLOYEE.value:
        return employee_id is not None and assignment.employee_id == employee_id
    if assignment.scope == AssignmentScope.TEAM.value:
        return team_id is not None and assignment.team_id == team_id
    return assignment.scope == AssignmentScope.ORGANIZATION.value


def rank_assignments(
    candidates: Iterable[PolicyAssignment],
    employee_id: UUID | None,
    team_id: UUID | None,
    on_date: date,
) -> list[PolicyAssignment]:
    """Order applicable assignments from strongest to weakest.

    Employee beats team beats organization; within one scope the most
    recently created row wins. Inactive rows, rows outside their
    effective window and rows for other employees/teams are dropped.
    """
    applicable = [
        a
        for a in candidates
        if a.is_active and a.is_effective_on(on_date) and _matches_subject(a, employee_id, team_id)
    ]
    return sorted(
        applicable,
        key=lambda a: (SCOPE_PRIORITY[a.scope], a.created_at),
        reverse=True,
    )


class PolicyResolver:
    """Resolves the effective policy for a subject on a date.

    Stateless and read-only. Callers pass the family tag; each family
    supplies its own payload loader to ``resolve_payload``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(
        self,
        policy_family: PolicyFamily | str,
        organization_id: UUID,
        employee_id: UUID | None,
        team_id: UUID | None,
        on_date: date,
    ) -> PolicyAssignment | None:
        """Return the single effective assignment, or None when nothing applies."""
        ranked = await self._ranked(policy_family, organization_id, employee_id, team_id, on_date)
        if not ranked:
            return None
        self._warn_on_ambiguity(ranked)
        return ranked[0]

    async def resolve_payload(
        self,
        policy_family: PolicyFamily | str,
        organization_id: UUID,
        employee_id: UUID | None,
        team_id: UUID | None,
        on_date: date,
        fetch: Callable[[UUID], Awaitable[T | None]],
    ) -> ResolvedPolicy[T] | None:
        """Resolve and load the family payload.

        ``fetch`` returns None for a missing or inactive policy record, in
        which case resolution falls through to the next weaker assignment.
        """
        ranked = await self._ranked(policy_family, organization_id, employee_id, team_id, on_date)
        if ranked:
            self._warn_on_ambiguity(ranked)

        for assignment in ranked:
            payload = await fetch(assignment.policy_id)
            if payload is not None:
                return ResolvedPolicy(assignment=assignment, payload=payload)
            logger.warning(
                "Assignment %s points at unavailable %s policy %s; falling back",
                assignment.policy_assignment_id,
                _family_value(policy_family),
                assignment.policy_id,
            )
        return None

    async def resolve_for_employee(
        self,
        policy_family: PolicyFamily | str,
        employee: Employee,
        on_date: date,
        fetch: Callable[[UUID], Awaitable[T | None]],
    ) -> ResolvedPolicy[T] | None:
        """Resolve using the employee's directory organization and team."""
        return await self.resolve_payload(
            policy_family,
            employee.organization_id,
            employee.employee_id,
            employee.team_id,
            on_date,
            fetch,
        )

    async def _ranked(
        self,
        policy_family: PolicyFamily | str,
        organization_id: UUID,
        employee_id: UUID | None,
        team_id: UUID | None,
        on_date: date,
    ) -> list[PolicyAssignment]:
        candidates = await self._get_candidate_assignments(
            _family_value(policy_family), organization_id, on_date
        )
        return rank_assignments(candidates, employee_id, team_id, on_date)

    async def _get_candidate_assignments(
        self,
        policy_family: str,
        organization_id: UUID,
        on_date: date,
    ) -> list[PolicyAssignment]:
        """Get all active assignments of a family effective on a date."""
        result = await self.session.execute(
            select(PolicyAssignment).where(
                PolicyAssignment.policy_family == policy_family,
                PolicyAssignment.organization_id == organization_id,
                PolicyAssignment.is_active.is_(True),
                PolicyAssignment.effective_from <= on_date,
                (
                    PolicyAssignment.effective_until.is_(None)
                    | (PolicyAssignment.effective_until > on_date)
                ),
            )
        )
        return list(result.scalars().all())

    @staticmethod
    def _warn_on_ambiguity(ranked: list[PolicyAssignment]) -> None:
        if len(ranked) > 1 and ranked[0].scope == ranked[1].scope:
            logger.warning(
                "Multiple active %s assignments at scope %s; using most recent %s",
                ranked[0].policy_family,
                ranked[0].scope,
                ranked[0].policy_assignment_id,
            )


def _family_value(policy_family: PolicyFamily | str) -> str:
    return policy_family.value if isinstance(policy_family, PolicyFamily) else policy_family
