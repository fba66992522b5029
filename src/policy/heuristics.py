"""Heuristic attention check used by diagnostic sweeps.

This is a separate policy from :func:`src.policy.classifier.classify`. Both
may flag the same stage and neither overrides the other.
"""

from __future__ import annotations

import datetime

from src.core.types import (
    AlertChannel,
    AlertPriority,
    AlertRecord,
    AttentionFinding,
    Stage,
    StageStatus,
)
from src.policy.clock import hours_remaining, to_instant

DEFAULT_CAPACITY_CEILING = 15000
NEAR_END_HOURS = 24.0

# Reason codes, in evaluation order.
OVERRUN = "overrun"
DEPARTURES_MET = "departures_met"
PREMATURE_ACTIVATION = "premature_activation"
EMPTY_ACTIVE = "empty_active"
NO_DEPARTURES_NEAR_END = "no_departures_near_end"
OVER_CAPACITY = "over_capacity"


def assess_attention(
    stage: Stage,
    now: datetime.datetime,
    tz: datetime.tzinfo = datetime.UTC,
    capacity_ceiling: int = DEFAULT_CAPACITY_CEILING,
) -> AttentionFinding | None:
    """Return the first attention condition that holds, or None.

    Raises:
        InvalidTimeFormatError: If the stage start or end cannot be parsed.
    """
    start = to_instant(stage.start_date, stage.start_time, tz)
    end = to_instant(stage.end_date, stage.end_time, tz)
    hours_to_end = hours_remaining(now, end)
    active = stage.status == StageStatus.ACTIVE
    name = stage.name

    if active and now > end:
        return AttentionFinding(
            reason=OVERRUN,
            priority=AlertPriority.CRITICAL,
            message=f'Stage "{name}" has exceeded its end time',
        )
    if (
        stage.status == StageStatus.WAITING_DEPARTURE
        and stage.departed_count >= stage.required_departures
    ):
        return AttentionFinding(
            reason=DEPARTURES_MET,
            priority=AlertPriority.HIGH,
            message=f'Stage "{name}" has reached its required departures',
        )
    if active and now < start:
        return AttentionFinding(
            reason=PREMATURE_ACTIVATION,
            priority=AlertPriority.HIGH,
            message=f'Stage "{name}" is active before its scheduled start',
        )
    if active and stage.current_pilgrims == 0:
        return AttentionFinding(
            reason=EMPTY_ACTIVE,
            priority=AlertPriority.MEDIUM,
            message=f'Stage "{name}" is active with no pilgrims',
        )
    if active and hours_to_end <= NEAR_END_HOURS and stage.departed_count == 0:
        return AttentionFinding(
            reason=NO_DEPARTURES_NEAR_END,
            priority=AlertPriority.CRITICAL,
            message=f'Stage "{name}" is about to end and no pilgrims have departed',
        )
    if active and stage.current_pilgrims > capacity_ceiling:
        return AttentionFinding(
            reason=OVER_CAPACITY,
            priority=AlertPriority.CRITICAL,
            message=(
                f'Stage "{name}" exceeds the expected headcount'
                f" ({stage.current_pilgrims} pilgrims)"
            ),
        )
    return None


def needs_attention(
    stage: Stage,
    now: datetime.datetime,
    tz: datetime.tzinfo = datetime.UTC,
    capacity_ceiling: int = DEFAULT_CAPACITY_CEILING,
) -> bool:
    return assess_attention(stage, now, tz, capacity_ceiling) is not None


def build_attention_record(stage: Stage, finding: AttentionFinding) -> AlertRecord:
    """Insert payload for a heuristic finding (in-app only)."""
    return AlertRecord(
        stage_id=stage.id,
        type=finding.priority,
        message=finding.message,
        channels=[AlertChannel.IN_APP],
    )
