"""Surcharge attribution over a work span using max-wins overlap.

Each rule's matcher is expanded into concrete instant intervals over the
local calendar days the span touches. The span is then cut at every
interval boundary; each elementary segment goes to the single strongest
rule covering it (priority, then percentage). Rules never stack.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from worktime_engine.calculators.types import (
    DateMatcher,
    DayOfWeekMatcher,
    Interval,
    MatcherSpec,
    RuleBreakdown,
    SurchargeResult,
    SurchargeRuleSpec,
    TimeWindowMatcher,
)
from worktime_engine.exceptions import InvalidPolicyDefinition

if TYPE_CHECKING:
    from worktime_engine.models import SurchargeRule

WEEKDAYS: dict[str, int] = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

PERCENT_QUANTUM = Decimal("0.0001")


def parse_hhmm(value: str) -> time:
    """Parse ``HH:MM`` (24h)."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as exc:
        raise InvalidPolicyDefinition(f"Invalid HH:MM time {value!r}") from exc


def matcher_from_model(rule: SurchargeRule) -> MatcherSpec:
    """Build the closed matcher variant for a stored rule."""
    if rule.rule_kind == "day_of_week":
        weekday = WEEKDAYS.get((rule.day_of_week or "").lower())
        if weekday is None:
            raise InvalidPolicyDefinition(
                f"Rule {rule.name!r}: unknown weekday {rule.day_of_week!r}"
            )
        return DayOfWeekMatcher(weekday=weekday)

    if rule.rule_kind == "time_window":
        if not rule.window_start_time or not rule.window_end_time:
            raise InvalidPolicyDefinition(f"Rule {rule.name!r}: time window needs start and end")
        return TimeWindowMatcher(
            start=parse_hhmm(rule.window_start_time),
            end=parse_hhmm(rule.window_end_time),
        )

    if rule.rule_kind == "date_based":
        if rule.specific_date is not None:
            return DateMatcher(start=rule.specific_date, end=rule.specific_date)
        if rule.date_range_start is not None and rule.date_range_end is not None:
            if rule.date_range_end < rule.date_range_start:
                raise InvalidPolicyDefinition(f"Rule {rule.name!r}: date range ends before it starts")
            return DateMatcher(start=rule.date_range_start, end=rule.date_range_end)
        raise InvalidPolicyDefinition(f"Rule {rule.name!r}: needs a specific date or a date range")

    raise InvalidPolicyDefinition(f"Rule {rule.name!r}: unknown kind {rule.rule_kind!r}")


def rule_spec_from_model(rule: SurchargeRule) -> SurchargeRuleSpec:
    """Validate a stored rule into a ``SurchargeRuleSpec``."""
    return SurchargeRuleSpec(
        rule_id=rule.surcharge_rule_id,
        name=rule.name,
        kind=rule.rule_kind,
        percentage=Decimal(rule.percentage),
        priority=rule.priority,
        matcher=matcher_from_model(rule),
        valid_from=rule.valid_from,
        valid_until=rule.valid_until,
    )


def _local_midnight(day: date, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=zone).astimezone(timezone.utc)


def _local_at(day: date, at: time, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)


def _local_days(span: Interval, zone: ZoneInfo) -> Iterable[date]:
    """Local dates from the day before the span starts through the day it ends.

    The leading day catches windows that open the previous evening.
    """
    day = span.start.astimezone(zone).date() - timedelta(days=1)
    last = span.end.astimezone(zone).date()
    while day <= last:
        yield day
        day += timedelta(days=1)


def _merge(intervals: Iterable[Interval]) -> list[Interval]:
    merged: list[Interval] = []
    for interval in sorted(intervals, key=lambda i: i.start):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def matched_intervals(rule: SurchargeRuleSpec, span: Interval, zone: ZoneInfo) -> list[Interval]:
    """Instant intervals inside ``span`` matched by ``rule``."""
    raw: list[Interval] = []
    matcher = rule.matcher

    for day in _local_days(span, zone):
        if isinstance(matcher, DayOfWeekMatcher):
            if day.weekday() == matcher.weekday:
                raw.append(Interval(_local_midnight(day, zone), _local_midnight(day + timedelta(days=1), zone)))
        elif isinstance(matcher, TimeWindowMatcher):
            start = _local_at(day, matcher.start, zone)
            end_day = day + timedelta(days=1) if matcher.crosses_midnight else day
            raw.append(Interval(start, _local_at(end_day, matcher.end, zone)))
        elif isinstance(matcher, DateMatcher):
            if matcher.start <= day <= matcher.end:
                raw.append(Interval(_local_midnight(day, zone), _local_midnight(day + timedelta(days=1), zone)))
        else:
            raise TypeError(f"Unsupported matcher {matcher!r}")

    window = span
    if rule.valid_from is not None or rule.valid_until is not None:
        window = window.intersect(
            Interval(
                rule.valid_from or span.start,
                rule.valid_until or span.end,
            )
        )
        if window is None:
            return []

    clipped = (iv.intersect(window) for iv in raw)
    return _merge(iv for iv in clipped if iv is not None)


def _segment_winner(
    segment: Interval,
    coverage: Sequence[tuple[SurchargeRuleSpec, list[Interval]]],
) -> SurchargeRuleSpec | None:
    winner: SurchargeRuleSpec | None = None
    for rule, intervals in coverage:
        if any(iv.start <= segment.start and segment.end <= iv.end for iv in intervals):
            if winner is None or rule.rank > winner.rank:
                winner = rule
    return winner


def _round_minutes(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def partition_span(
    span: Interval,
    rules: Sequence[SurchargeRuleSpec],
    zone: ZoneInfo,
    base_minutes: int | None = None,
) -> SurchargeResult:
    """Attribute every instant of ``span`` to at most one rule and aggregate."""
    if base_minutes is None:
        base_minutes = span.seconds // 60

    if span.seconds == 0 or not rules:
        return SurchargeResult(base_minutes=base_minutes)

    coverage = [(rule, matched_intervals(rule, span, zone)) for rule in rules]

    boundaries = {span.start, span.end}
    for _, intervals in coverage:
        for iv in intervals:
            boundaries.add(iv.start)
            boundaries.add(iv.end)
    cuts = sorted(boundaries)

    by_rule: dict[str, RuleBreakdown] = {}
    seconds: dict[str, int] = {}
    for start, end in zip(cuts, cuts[1:]):
        segment = Interval(start, end)
        winner = _segment_winner(segment, coverage)
        if winner is None:
            continue
        key = str(winner.rule_id)
        entry = by_rule.get(key)
        if entry is None:
            entry = RuleBreakdown(
                rule_id=winner.rule_id,
                rule_name=winner.name,
                rule_kind=winner.kind,
                percentage=winner.percentage,
            )
            by_rule[key] = entry
            seconds[key] = 0
        seconds[key] += segment.seconds
        if entry.intervals and entry.intervals[-1].end == segment.start:
            entry.intervals[-1] = Interval(entry.intervals[-1].start, segment.end)
        else:
            entry.intervals.append(segment)

    breakdown: list[RuleBreakdown] = []
    for rule in sorted(rules, key=lambda r: r.rank, reverse=True):
        entry = by_rule.get(str(rule.rule_id))
        if entry is None:
            continue
        entry.qualifying_minutes = seconds[str(rule.rule_id)] // 60
        if entry.qualifying_minutes == 0:
            continue
        entry.surcharge_minutes = _round_minutes(entry.qualifying_minutes * entry.percentage)
        breakdown.append(entry)

    qualifying = sum(b.qualifying_minutes for b in breakdown)
    surcharge = sum(b.surcharge_minutes for b in breakdown)
    if qualifying:
        weighted = sum(b.qualifying_minutes * b.percentage for b in breakdown) / qualifying
        applied = weighted.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)
    else:
        applied = Decimal("0")

    return SurchargeResult(
        base_minutes=base_minutes,
        qualifying_minutes=min(qualifying, base_minutes),
        surcharge_minutes=surcharge,
        applied_percentage=applied,
        breakdown=breakdown,
    )
