"""Alert policies — pure classification of stage snapshots."""

from src.policy.classifier import (
    build_alert_record,
    classify,
    departure_rate,
    priority_for,
    render_message,
)
from src.policy.clock import format_remaining, hours_remaining, to_instant
from src.policy.heuristics import (
    assess_attention,
    build_attention_record,
    needs_attention,
)
from src.policy.stage_checks import (
    calculate_stage_stats,
    check_stage_consistency,
    find_activatable_stages,
    validate_stage_counts,
)

__all__ = [
    "assess_attention",
    "build_alert_record",
    "build_attention_record",
    "calculate_stage_stats",
    "check_stage_consistency",
    "classify",
    "departure_rate",
    "find_activatable_stages",
    "format_remaining",
    "hours_remaining",
    "needs_attention",
    "priority_for",
    "render_message",
    "to_instant",
    "validate_stage_counts",
]
