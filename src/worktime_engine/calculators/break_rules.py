"""Break requirement evaluation.

Breaks are not clocked explicitly; they are the gaps between consecutive
work periods of the same day. A rule applies once worked minutes reach
its threshold, and its split options decide which gaps count toward the
required break:

- no options: every gap counts
- fixed split (n parts, each >= m minutes): the n longest gaps of at least
  m minutes count
- any number of splits with floor f: all gaps count, provided the longest
  one reaches f; otherwise none do

Options are alternatives; the one crediting the most break time wins.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from worktime_engine.calculators.types import (
    AnySplitOption,
    BreakOptionSpec,
    BreakRequirement,
    BreakRuleSpec,
    FixedSplitOption,
    OptionOutcome,
    RegulationSpec,
)

if TYPE_CHECKING:
    from worktime_engine.models import BreakOption, WorkingTimeRegulation


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, never negative."""
    return max(0, int((end - start).total_seconds() // 60))


def format_minutes(minutes: int) -> str:
    """Render minutes as ``7h 30m`` style text."""
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def option_spec_from_model(option: BreakOption) -> BreakOptionSpec:
    """Convert a stored split option into its closed variant."""
    if option.split_count is not None:
        return FixedSplitOption(
            split_count=option.split_count,
            minimum_split_minutes=option.minimum_split_minutes or 0,
        )
    return AnySplitOption(minimum_longest_split_minutes=option.minimum_longest_split_minutes or 0)


def regulation_spec_from_model(regulation: WorkingTimeRegulation) -> RegulationSpec:
    """Convert a stored regulation and its rules into a ``RegulationSpec``."""
    rules = tuple(
        BreakRuleSpec(
            threshold_minutes=rule.threshold_minutes,
            required_break_minutes=rule.required_break_minutes,
            options=tuple(option_spec_from_model(o) for o in rule.options),
            rule_id=rule.break_rule_id,
        )
        for rule in regulation.break_rules
    )
    return RegulationSpec(
        regulation_id=regulation.regulation_id,
        name=regulation.name,
        max_daily_minutes=regulation.max_daily_minutes,
        max_weekly_minutes=regulation.max_weekly_minutes,
        max_uninterrupted_minutes=regulation.max_uninterrupted_minutes,
        break_rules=rules,
    )


def gaps_between(spans: Sequence[tuple[datetime, datetime]]) -> list[int]:
    """Minutes between consecutive ``(start, end)`` spans ordered by start."""
    ordered = sorted(spans, key=lambda s: s[0])
    return [
        minutes_between(prev_end, next_start)
        for (_, prev_end), (next_start, _) in zip(ordered, ordered[1:])
    ]


def find_applicable_rule(
    rules: Sequence[BreakRuleSpec],
    worked_minutes: int,
) -> BreakRuleSpec | None:
    """Rule with the highest threshold not exceeding ``worked_minutes``."""
    applicable = [r for r in rules if r.threshold_minutes <= worked_minutes]
    if not applicable:
        return None
    return max(applicable, key=lambda r: r.threshold_minutes)


def evaluate_option(
    option: BreakOptionSpec | None,
    gaps: Sequence[int],
    required_minutes: int,
) -> OptionOutcome:
    """Break minutes credited under one split option."""
    positive = [g for g in gaps if g > 0]

    if option is None:
        counted = sum(positive)
    elif isinstance(option, FixedSplitOption):
        qualifying = sorted(
            (g for g in positive if g >= option.minimum_split_minutes),
            reverse=True,
        )
        counted = sum(qualifying[: option.split_count])
    elif isinstance(option, AnySplitOption):
        if positive and max(positive) >= option.minimum_longest_split_minutes:
            counted = sum(positive)
        else:
            counted = 0
    else:
        raise TypeError(f"Unsupported break option {option!r}")

    return OptionOutcome(option=option, counted_minutes=counted, satisfied=counted >= required_minutes)


def calculate_break_requirement(
    regulation: RegulationSpec,
    worked_minutes: int,
    gaps: Sequence[int],
) -> BreakRequirement:
    """Break requirement for a day given worked minutes and the gaps taken."""
    taken = sum(g for g in gaps if g > 0)
    rule = find_applicable_rule(regulation.break_rules, worked_minutes)

    if rule is None:
        return BreakRequirement(
            is_required=False,
            total_break_needed=0,
            break_taken=taken,
            break_counted=taken,
            remaining=0,
        )

    options: Sequence[BreakOptionSpec | None] = rule.options or (None,)
    outcomes = [evaluate_option(o, gaps, rule.required_break_minutes) for o in options]
    best = max(outcomes, key=lambda o: (o.satisfied, o.counted_minutes))

    return BreakRequirement(
        is_required=True,
        total_break_needed=rule.required_break_minutes,
        break_taken=taken,
        break_counted=best.counted_minutes,
        remaining=max(0, rule.required_break_minutes - best.counted_minutes),
        rule=rule,
        split_options=tuple(o.describe() for o in rule.options),
        best_option=best.option,
    )
