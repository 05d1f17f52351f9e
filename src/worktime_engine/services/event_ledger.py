"""Append-only, hash-linked clock event ledger."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from worktime_engine.calculators.hashing import (
    canonicalize_json,
    compute_event_digest,
    verify_events,
)
from worktime_engine.calculators.types import ChainVerification
from worktime_engine.config import get_settings
from worktime_engine.database import session_scope
from worktime_engine.exceptions import (
    ChainConflict,
    EventAlreadySuperseded,
    IntegrityViolation,
    NotFoundError,
    OutOfOrderEvent,
)
from worktime_engine.models import ClockEvent, ClockEventKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPENDABLE_KINDS = {ClockEventKind.START.value, ClockEventKind.STOP.value}


def normalize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Round-trip metadata through canonical JSON so stored and hashed data agree."""
    return json.loads(canonicalize_json(metadata or {}))


class EventLedger:
    """Per-employee clock event chain.

    Every event points at its predecessor (``prior_event_id``) and carries
    the predecessor's digest. Events are ordered by a monotonic
    per-employee ``sequence``; the unique (employee_id, sequence) and
    unique prior_event_id constraints make two appends on the same tail
    impossible.

    The ledger never commits; callers own the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_event(self, clock_event_id: UUID) -> ClockEvent:
        """Load an event or raise NotFoundError."""
        event = await self.session.get(ClockEvent, clock_event_id)
        if event is None:
            raise NotFoundError("ClockEvent", clock_event_id)
        return event

    async def get_tail(self, employee_id: UUID, for_update: bool = False) -> ClockEvent | None:
        """Latest event in the employee's chain."""
        query = (
            select(ClockEvent)
            .where(ClockEvent.employee_id == employee_id)
            .order_by(ClockEvent.sequence.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_latest_effective(self, employee_id: UUID) -> ClockEvent | None:
        """Latest event still in effect, by timestamp.

        A correction takes effect at its corrected instant, so the chain
        tail is not necessarily the latest point in time.
        """
        result = await self.session.execute(
            select(ClockEvent)
            .where(
                ClockEvent.employee_id == employee_id,
                ClockEvent.superseded.is_(False),
            )
            .order_by(ClockEvent.timestamp.desc(), ClockEvent.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_chain(self, employee_id: UUID) -> list[ClockEvent]:
        """All events for an employee in chain order."""
        result = await self.session.execute(
            select(ClockEvent)
            .where(ClockEvent.employee_id == employee_id)
            .order_by(ClockEvent.sequence)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def append(
        self,
        employee_id: UUID,
        kind: ClockEventKind | str,
        timestamp: datetime,
        metadata: dict[str, Any] | None = None,
        expected_tail_id: UUID | None = None,
    ) -> ClockEvent:
        """Append a start or stop event to the employee's chain.

        Args:
            employee_id: Chain owner
            kind: ``start`` or ``stop``; corrections go through ``correct``
            timestamp: Timezone-aware event instant
            metadata: Freeform JSON-compatible payload
            expected_tail_id: Tail the caller last observed, if any

        Raises:
            OutOfOrderEvent: If timestamp precedes the latest event in
                effect, corrections counted at their corrected instant
            ChainConflict: If the tail moved since the caller observed it
                or a concurrent append won the race
        """
        kind_value = kind.value if isinstance(kind, ClockEventKind) else kind
        if kind_value not in APPENDABLE_KINDS:
            raise ValueError(f"Cannot append event of kind {kind_value!r}; use correct()")
        if timestamp.tzinfo is None:
            raise ValueError("Clock event timestamps must be timezone-aware")

        tail = await self.get_tail(employee_id, for_update=True)
        self._check_expected_tail(employee_id, tail, expected_tail_id)

        latest = await self.get_latest_effective(employee_id)
        if latest is not None and timestamp < latest.timestamp:
            raise OutOfOrderEvent(employee_id, timestamp, latest.timestamp)

        event = self._build_event(employee_id, kind_value, timestamp, metadata, tail)
        await self._insert(event, tail)

        logger.info(
            "Appended %s event %s for employee %s at sequence %d",
            kind_value,
            event.clock_event_id,
            employee_id,
            event.sequence,
        )
        return event

    async def correct(
        self,
        original_event_id: UUID,
        new_timestamp: datetime,
        metadata: dict[str, Any] | None = None,
        expected_tail_id: UUID | None = None,
    ) -> ClockEvent:
        """Supersede an event with a correction appended at the chain tail.

        The original row is left untouched apart from its supersede
        flag and pointer, which flip in the same savepoint as the insert.
        The correction's metadata records the superseded id and the kind
        it corrects, so both are covered by its digest.

        Raises:
            NotFoundError: If the original event does not exist
            EventAlreadySuperseded: If the original was already corrected
            ChainConflict: If a concurrent append won the race
        """
        if new_timestamp.tzinfo is None:
            raise ValueError("Clock event timestamps must be timezone-aware")
        original = await self.get_event(original_event_id)
        if original.superseded:
            raise EventAlreadySuperseded(original_event_id, original.superseded_by_event_id)

        employee_id = original.employee_id
        tail = await self.get_tail(employee_id, for_update=True)
        self._check_expected_tail(employee_id, tail, expected_tail_id)

        corrected_kind = await self.corrected_kind(original)
        payload = dict(metadata or {})
        payload["supersedes_event_id"] = str(original_event_id)
        payload["corrected_kind"] = corrected_kind

        event = self._build_event(
            employee_id,
            ClockEventKind.CORRECTION.value,
            new_timestamp,
            payload,
            tail,
            supersedes_event_id=original_event_id,
        )
        await self._insert(event, tail, supersedes=original)

        logger.info(
            "Correction %s supersedes %s event %s for employee %s",
            event.clock_event_id,
            corrected_kind,
            original_event_id,
            employee_id,
        )
        return event

    async def corrected_kind(self, event: ClockEvent) -> str:
        """Kind of the start/stop event at the root of a correction chain."""
        return (await self.root_event(event)).kind

    async def root_event(self, event: ClockEvent) -> ClockEvent:
        """Original start/stop event a correction chain ultimately replaces."""
        current = event
        while current.supersedes_event_id is not None:
            current = await self.get_event(current.supersedes_event_id)
        return current

    async def verify_chain(self, employee_id: UUID) -> ChainVerification:
        """Recompute every digest in the employee's chain."""
        events = await self.get_chain(employee_id)
        verification = verify_events(employee_id, events)
        if verification.is_valid:
            logger.debug(
                "Chain for employee %s verified (%d events)", employee_id, verification.total_events
            )
        return verification

    async def assert_chain_intact(self, employee_id: UUID) -> ChainVerification:
        """Verify the chain, raising IntegrityViolation on any issue."""
        verification = await self.verify_chain(employee_id)
        if not verification.is_valid:
            logger.error(
                "Integrity violation in clock event chain for employee %s: %s",
                employee_id,
                [issue.to_dict() for issue in verification.issues],
            )
            raise IntegrityViolation(verification)
        return verification

    @staticmethod
    def _check_expected_tail(
        employee_id: UUID,
        tail: ClockEvent | None,
        expected_tail_id: UUID | None,
    ) -> None:
        if expected_tail_id is None:
            return
        actual = tail.clock_event_id if tail is not None else None
        if actual != expected_tail_id:
            raise ChainConflict(employee_id, expected_tail_id, actual)

    @staticmethod
    def _build_event(
        employee_id: UUID,
        kind: str,
        timestamp: datetime,
        metadata: dict[str, Any] | None,
        tail: ClockEvent | None,
        supersedes_event_id: UUID | None = None,
    ) -> ClockEvent:
        payload = normalize_metadata(metadata)
        prior_digest = tail.digest if tail is not None else None
        digest = compute_event_digest(
            employee_id=employee_id,
            kind=kind,
            timestamp=timestamp,
            metadata=payload,
            prior_digest=prior_digest,
        )
        return ClockEvent(
            employee_id=employee_id,
            sequence=tail.sequence + 1 if tail is not None else 1,
            kind=kind,
            timestamp=timestamp,
            metadata_json=payload,
            prior_event_id=tail.clock_event_id if tail is not None else None,
            prior_digest=prior_digest,
            digest=digest,
            supersedes_event_id=supersedes_event_id,
        )

    async def _insert(
        self,
        event: ClockEvent,
        tail: ClockEvent | None,
        supersedes: ClockEvent | None = None,
    ) -> None:
        """Insert inside a savepoint; constraint failures become ChainConflict."""
        expected = tail.clock_event_id if tail is not None else None
        try:
            async with self.session.begin_nested():
                self.session.add(event)
                await self.session.flush()

                if supersedes is not None:
                    result = await self.session.execute(
                        update(ClockEvent)
                        .where(
                            ClockEvent.clock_event_id == supersedes.clock_event_id,
                            ClockEvent.superseded.is_(False),
                        )
                        .values(superseded=True, superseded_by_event_id=event.clock_event_id)
                    )
                    if result.rowcount == 0:
                        raise EventAlreadySuperseded(supersedes.clock_event_id, None)
        except IntegrityError as exc:
            actual = await self.get_tail(event.employee_id)
            logger.warning(
                "Chain conflict for employee %s: expected tail %s, found %s",
                event.employee_id,
                expected,
                actual.clock_event_id if actual is not None else None,
            )
            raise ChainConflict(
                event.employee_id,
                expected,
                actual.clock_event_id if actual is not None else None,
            ) from exc

        if supersedes is not None:
            await self.session.refresh(supersedes)


async def run_with_chain_retry(
    session_factory: async_sessionmaker[AsyncSession],
    fn: Callable[[AsyncSession], Awaitable[T]],
    attempts: int | None = None,
) -> T:
    """Run ``fn`` in its own transaction, retrying on ChainConflict.

    Each attempt opens a fresh session so the retried unit of work sees
    the new chain tail. The last ChainConflict is re-raised once
    ``attempts`` is exhausted.
    """
    if attempts is None:
        attempts = get_settings().chain_retry_attempts

    for attempt in range(1, attempts + 1):
        try:
            async with session_scope(session_factory) as session:
                return await fn(session)
        except ChainConflict as exc:
            if attempt >= attempts:
                logger.error(
                    "Chain conflict for employee %s persisted after %d attempts",
                    exc.employee_id,
                    attempts,
                )
                raise
            logger.warning(
                "Chain conflict for employee %s, retrying (%d/%d)",
                exc.employee_id,
                attempt,
                attempts,
            )

    raise RuntimeError("attempts must be at least 1")
