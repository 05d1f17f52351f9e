"""Type definitions for the calculation pipeline.

Rule payloads that are stored loosely (break split options, surcharge
matcher columns) are converted once into the closed variants below and
never re-interpreted downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID


# ============================================================================
# Chain verification
# ============================================================================


class ChainIssueType(str, Enum):
    """Kinds of chain integrity failures."""

    INVALID_GENESIS = "invalid_genesis"
    CHAIN_BREAK = "chain_break"
    HASH_MISMATCH = "hash_mismatch"
    SUPERSEDE_MISMATCH = "supersede_mismatch"


@dataclass(frozen=True)
class ChainIssue:
    """One detected integrity failure."""

    issue_type: ChainIssueType
    event_id: UUID
    index: int
    expected: str | None
    actual: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.issue_type.value,
            "event_id": str(self.event_id),
            "index": self.index,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass(frozen=True)
class ChainVerification:
    """Result of walking an employee's clock event chain."""

    employee_id: UUID
    total_events: int
    valid_events: int
    issues: tuple[ChainIssue, ...] = ()
    chain_digest: str | None = None

    @property
    def is_valid(self) -> bool:
        return not self.issues


# ============================================================================
# Break rules
# ============================================================================


@dataclass(frozen=True)
class FixedSplitOption:
    """Break may be taken in up to ``split_count`` parts of at least ``minimum_split_minutes``."""

    split_count: int
    minimum_split_minutes: int

    def describe(self) -> str:
        if self.split_count == 1:
            return "Take entire break at once"
        return (
            f"Split into {self.split_count} breaks, "
            f"each at least {self.minimum_split_minutes} minutes"
        )


@dataclass(frozen=True)
class AnySplitOption:
    """Any number of parts, the longest lasting at least ``minimum_longest_split_minutes``."""

    minimum_longest_split_minutes: int

    def describe(self) -> str:
        if not self.minimum_longest_split_minutes:
            return "Split into any number of breaks"
        return (
            "Split into any number of breaks, with one lasting at least "
            f"{self.minimum_longest_split_minutes} minutes"
        )


BreakOptionSpec = Union[FixedSplitOption, AnySplitOption]


@dataclass(frozen=True)
class BreakRuleSpec:
    """Validated break rule."""

    threshold_minutes: int
    required_break_minutes: int
    options: tuple[BreakOptionSpec, ...] = ()
    rule_id: UUID | None = None


@dataclass(frozen=True)
class RegulationSpec:
    """Validated working-time regulation."""

    regulation_id: UUID | None
    name: str
    max_daily_minutes: int | None = None
    max_weekly_minutes: int | None = None
    max_uninterrupted_minutes: int | None = None
    break_rules: tuple[BreakRuleSpec, ...] = ()


@dataclass(frozen=True)
class OptionOutcome:
    """How the day's breaks measure up against one split option."""

    option: BreakOptionSpec | None
    counted_minutes: int
    satisfied: bool


@dataclass(frozen=True)
class BreakRequirement:
    """Break requirement for a day's worked minutes."""

    is_required: bool
    total_break_needed: int
    break_taken: int
    break_counted: int
    remaining: int
    rule: BreakRuleSpec | None = None
    split_options: tuple[str, ...] = ()
    best_option: BreakOptionSpec | None = None

    @property
    def satisfied(self) -> bool:
        return self.remaining == 0


class Severity(str, Enum):
    """Live compliance warning severity."""

    VIOLATION = "violation"
    WARNING = "warning"


@dataclass(frozen=True)
class ComplianceWarning:
    """Non-persisted compliance finding for a running session."""

    kind: str
    message: str
    actual_minutes: int
    limit_minutes: int
    severity: Severity


@dataclass
class ComplianceCheck:
    """Live compliance check for an employee at an instant."""

    employee_id: UUID
    regulation: RegulationSpec | None
    warnings: list[ComplianceWarning] = field(default_factory=list)
    break_requirement: BreakRequirement | None = None

    @property
    def is_compliant(self) -> bool:
        return not any(w.severity == Severity.VIOLATION for w in self.warnings)


# ============================================================================
# Surcharges
# ============================================================================


@dataclass(frozen=True)
class DayOfWeekMatcher:
    """Whole calendar days on ``weekday`` (0=Monday ... 6=Sunday)."""

    weekday: int


@dataclass(frozen=True)
class TimeWindowMatcher:
    """Daily ``start``-``end`` window; ``end <= start`` crosses midnight."""

    start: time
    end: time

    @property
    def crosses_midnight(self) -> bool:
        return self.end <= self.start


@dataclass(frozen=True)
class DateMatcher:
    """Inclusive date range; a single date has ``start == end``."""

    start: date
    end: date


MatcherSpec = Union[DayOfWeekMatcher, TimeWindowMatcher, DateMatcher]


@dataclass(frozen=True)
class SurchargeRuleSpec:
    """Validated surcharge rule."""

    rule_id: UUID
    name: str
    kind: str
    percentage: Decimal
    priority: int
    matcher: MatcherSpec
    valid_from: datetime | None = None
    valid_until: datetime | None = None

    @property
    def rank(self) -> tuple[int, Decimal, str]:
        """Ordering key for max-wins: priority, then percentage, then id."""
        return (self.priority, self.percentage, str(self.rule_id))


@dataclass(frozen=True)
class Interval:
    """Half-open instant interval ``[start, end)``."""

    start: datetime
    end: datetime

    @property
    def seconds(self) -> int:
        return max(0, int((self.end - self.start).total_seconds()))

    def intersect(self, other: Interval) -> Interval | None:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return Interval(start, end)


@dataclass
class RuleBreakdown:
    """Per-rule share of a calculation."""

    rule_id: UUID
    rule_name: str
    rule_kind: str
    percentage: Decimal
    qualifying_minutes: int = 0
    surcharge_minutes: int = 0
    intervals: list[Interval] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": str(self.rule_id),
            "rule_name": self.rule_name,
            "rule_kind": self.rule_kind,
            "percentage": str(self.percentage),
            "qualifying_minutes": self.qualifying_minutes,
            "surcharge_minutes": self.surcharge_minutes,
            "intervals": [
                {"start": i.start.isoformat(), "end": i.end.isoformat()} for i in self.intervals
            ],
        }


@dataclass
class SurchargeResult:
    """Outcome of partitioning a work span among surcharge rules."""

    base_minutes: int
    qualifying_minutes: int = 0
    surcharge_minutes: int = 0
    applied_percentage: Decimal = Decimal("0")
    breakdown: list[RuleBreakdown] = field(default_factory=list)

    @property
    def total_credited_minutes(self) -> int:
        return self.base_minutes + self.surcharge_minutes

    @property
    def primary_rule_id(self) -> UUID | None:
        """Rule contributing the most surcharge minutes."""
        if not self.breakdown:
            return None
        top = max(self.breakdown, key=lambda b: (b.surcharge_minutes, b.qualifying_minutes))
        return top.rule_id
