"""Pure calculation and policy resolution."""

from worktime_engine.calculators.break_rules import calculate_break_requirement, format_minutes
from worktime_engine.calculators.hashing import compute_event_digest, verify_events
from worktime_engine.calculators.policy_resolver import PolicyResolver, ResolvedPolicy
from worktime_engine.calculators.presets import PRESETS, RegulationPreset
from worktime_engine.calculators.surcharge_partition import partition_span

__all__ = [
    "PRESETS",
    "PolicyResolver",
    "RegulationPreset",
    "ResolvedPolicy",
    "calculate_break_requirement",
    "compute_event_digest",
    "format_minutes",
    "partition_span",
    "verify_events",
]
