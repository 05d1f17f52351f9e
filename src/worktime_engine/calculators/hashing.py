"""Deterministic digests for the clock event chain.

digest = SHA-256(canonical JSON of employee_id, kind, timestamp, metadata,
prior_digest). Canonical JSON sorts keys, drops whitespace and renders
UUIDs, datetimes (UTC, ISO-8601) and Decimals as strings so the digest is
reproducible on any backend.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from worktime_engine.calculators.types import (
    ChainIssue,
    ChainIssueType,
    ChainVerification,
)

if TYPE_CHECKING:
    from worktime_engine.models import ClockEvent


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return normalize_timestamp(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Deterministic JSON representation."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_json_default)


def normalize_timestamp(value: datetime) -> str:
    """UTC ISO-8601 rendering used inside digests."""
    if value.tzinfo is None:
        raise ValueError("Chain timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat()


def compute_event_digest(
    *,
    employee_id: UUID,
    kind: str,
    timestamp: datetime,
    metadata: dict[str, Any] | None,
    prior_digest: str | None,
) -> str:
    """Digest of one event chained onto ``prior_digest``."""
    canonical = canonicalize_json(
        {
            "employee_id": str(employee_id),
            "kind": kind,
            "timestamp": normalize_timestamp(timestamp),
            "metadata": metadata or {},
            "prior_digest": prior_digest,
        }
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def digest_for(event: ClockEvent, prior_digest: str | None) -> str:
    """Recompute a stored event's digest against a given predecessor digest."""
    return compute_event_digest(
        employee_id=event.employee_id,
        kind=event.kind,
        timestamp=event.timestamp,
        metadata=event.metadata_json,
        prior_digest=prior_digest,
    )


def chain_fingerprint(digests: Sequence[str]) -> str | None:
    """Single digest summarizing a whole chain, None when empty."""
    if not digests:
        return None
    return hashlib.sha256("".join(digests).encode("utf-8")).hexdigest()


def _str_or_none(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def verify_events(employee_id: UUID, events: Sequence[ClockEvent]) -> ChainVerification:
    """Walk a chain in sequence order, recomputing every digest.

    Each event is checked for two things: its ``prior_digest`` must equal
    the predecessor's stored digest (genesis must have none) and its
    ``digest`` must match a fresh computation over its own fields.

    The supersede columns are not hashed, so they are checked against the
    ``supersedes_event_id`` each correction's digest covers.
    """
    issues: list[ChainIssue] = []
    valid = 0
    previous: ClockEvent | None = None

    superseded_by = {
        e.metadata_json["supersedes_event_id"]: str(e.clock_event_id)
        for e in events
        if (e.metadata_json or {}).get("supersedes_event_id")
    }

    for index, event in enumerate(events):
        event_ok = True

        if previous is None:
            if event.prior_digest is not None or event.prior_event_id is not None:
                issues.append(
                    ChainIssue(
                        ChainIssueType.INVALID_GENESIS,
                        event.clock_event_id,
                        index,
                        expected="null",
                        actual=event.prior_digest,
                    )
                )
                event_ok = False
        elif (
            event.prior_digest != previous.digest
            or event.prior_event_id != previous.clock_event_id
        ):
            issues.append(
                ChainIssue(
                    ChainIssueType.CHAIN_BREAK,
                    event.clock_event_id,
                    index,
                    expected=previous.digest,
                    actual=event.prior_digest,
                )
            )
            event_ok = False

        recomputed = digest_for(event, event.prior_digest)
        if recomputed != event.digest:
            issues.append(
                ChainIssue(
                    ChainIssueType.HASH_MISMATCH,
                    event.clock_event_id,
                    index,
                    expected=recomputed,
                    actual=event.digest,
                )
            )
            event_ok = False

        hashed_supersedes = (event.metadata_json or {}).get("supersedes_event_id")
        stored_supersedes = _str_or_none(event.supersedes_event_id)
        if stored_supersedes != hashed_supersedes:
            issues.append(
                ChainIssue(
                    ChainIssueType.SUPERSEDE_MISMATCH,
                    event.clock_event_id,
                    index,
                    expected=hashed_supersedes,
                    actual=stored_supersedes,
                )
            )
            event_ok = False

        expected_by = superseded_by.get(str(event.clock_event_id))
        stored_by = _str_or_none(event.superseded_by_event_id)
        if stored_by != expected_by or bool(event.superseded) != (expected_by is not None):
            issues.append(
                ChainIssue(
                    ChainIssueType.SUPERSEDE_MISMATCH,
                    event.clock_event_id,
                    index,
                    expected=expected_by,
                    actual=stored_by,
                )
            )
            event_ok = False

        if event_ok:
            valid += 1
        previous = event

    return ChainVerification(
        employee_id=employee_id,
        total_events=len(events),
        valid_events=valid,
        issues=tuple(issues),
        chain_digest=None if issues else chain_fingerprint([e.digest for e in events]),
    )
