"""Built-in working-time regulation templates.

Presets are importable into an organization as an ordinary regulation,
after which they can be edited independently of the template.
"""

from __future__ import annotations

from dataclasses import dataclass

from worktime_engine.calculators.types import (
    AnySplitOption,
    BreakRuleSpec,
    FixedSplitOption,
)


@dataclass(frozen=True)
class RegulationPreset:
    """Template for a working-time regulation."""

    key: str
    name: str
    description: str
    country_code: str | None
    max_daily_minutes: int | None
    max_weekly_minutes: int | None
    max_uninterrupted_minutes: int | None
    break_rules: tuple[BreakRuleSpec, ...]


GERMAN_WORKING_HOURS_ACT = RegulationPreset(
    key="de_arbzg",
    name="German Working Hours Act",
    description=(
        "Arbeitszeitgesetz: at most 10 hours a day and 48 hours a week, no more than "
        "6 hours without a break; 30 minutes break after 6 hours, 45 minutes after 9 "
        "hours, splittable into parts of at least 15 minutes."
    ),
    country_code="DE",
    max_daily_minutes=600,
    max_weekly_minutes=2880,
    max_uninterrupted_minutes=360,
    break_rules=(
        BreakRuleSpec(
            threshold_minutes=360,
            required_break_minutes=30,
            options=(
                FixedSplitOption(split_count=1, minimum_split_minutes=30),
                FixedSplitOption(split_count=2, minimum_split_minutes=15),
            ),
        ),
        BreakRuleSpec(
            threshold_minutes=540,
            required_break_minutes=45,
            options=(
                FixedSplitOption(split_count=1, minimum_split_minutes=45),
                FixedSplitOption(split_count=3, minimum_split_minutes=15),
            ),
        ),
    ),
)

EU_WORKING_TIME_DIRECTIVE = RegulationPreset(
    key="eu_wtd",
    name="EU Working Time Directive",
    description=(
        "Directive 2003/88/EC baseline: average weekly working time of at most 48 "
        "hours and a rest break when the working day exceeds 6 hours."
    ),
    country_code=None,
    max_daily_minutes=None,
    max_weekly_minutes=2880,
    max_uninterrupted_minutes=None,
    break_rules=(
        BreakRuleSpec(
            threshold_minutes=360,
            required_break_minutes=20,
            options=(AnySplitOption(minimum_longest_split_minutes=10),),
        ),
    ),
)

PRESETS: dict[str, RegulationPreset] = {
    preset.key: preset for preset in (GERMAN_WORKING_HOURS_ACT, EU_WORKING_TIME_DIRECTIVE)
}
