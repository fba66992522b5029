"""Primary alert policy — time-to-end classification of a stage snapshot.

Pure functions only. ``classify`` evaluates its thresholds in strict order
and the first match wins, so an overdue stage is always critical with the
full channel fan-out.
"""

from __future__ import annotations

import datetime

from src.core.types import (
    AlertAnalysis,
    AlertChannel,
    AlertMetadata,
    AlertPriority,
    AlertRecord,
    Stage,
)
from src.policy.clock import format_remaining, hours_remaining, to_instant

# ── Thresholds (hours until end) ────────────────────────────────

OVERDUE_HOURS = -1.0
CRITICAL_HOURS = 6.0
HIGH_HOURS = 24.0
ALERT_WINDOW_HOURS = 48.0

# (upper bound in hours, priority, channels), checked top to bottom.
_PRIORITY_TABLE: tuple[tuple[float, AlertPriority, tuple[AlertChannel, ...]], ...] = (
    (
        OVERDUE_HOURS,
        AlertPriority.CRITICAL,
        (
            AlertChannel.PUSH,
            AlertChannel.SMS,
            AlertChannel.WHATSAPP,
            AlertChannel.EMAIL,
            AlertChannel.IN_APP,
        ),
    ),
    (
        CRITICAL_HOURS,
        AlertPriority.CRITICAL,
        (AlertChannel.PUSH, AlertChannel.SMS, AlertChannel.EMAIL, AlertChannel.IN_APP),
    ),
    (
        HIGH_HOURS,
        AlertPriority.HIGH,
        (AlertChannel.PUSH, AlertChannel.EMAIL, AlertChannel.IN_APP),
    ),
)

_DEFAULT_PRIORITY = AlertPriority.LOW
_DEFAULT_CHANNELS: tuple[AlertChannel, ...] = (AlertChannel.IN_APP,)


def departure_rate(stage: Stage) -> float:
    """Departed ÷ required × 100, unclamped; 0 when nothing is required."""
    if stage.required_departures > 0:
        return stage.departed_count / stage.required_departures * 100
    return 0.0


def priority_for(time_remaining: float) -> tuple[AlertPriority, list[AlertChannel]]:
    """Map signed hours-to-end onto a priority and channel set."""
    for upper, priority, channels in _PRIORITY_TABLE:
        if time_remaining <= upper:
            return priority, list(channels)
    return _DEFAULT_PRIORITY, list(_DEFAULT_CHANNELS)


def classify(
    stage: Stage,
    now: datetime.datetime,
    tz: datetime.tzinfo = datetime.UTC,
) -> AlertAnalysis:
    """Classify *stage* at instant *now*.

    Raises:
        InvalidTimeFormatError: If the stage end date/time cannot be parsed.
    """
    end = to_instant(stage.end_date, stage.end_time, tz)
    time_remaining = hours_remaining(now, end)
    priority, channels = priority_for(time_remaining)

    needs_alert = (
        time_remaining <= ALERT_WINDOW_HOURS
        or time_remaining <= OVERDUE_HOURS
        or priority == AlertPriority.CRITICAL
    )

    return AlertAnalysis(
        priority=priority,
        channels=channels,
        needs_alert=needs_alert,
        time_remaining=time_remaining,
        # Occupancy does not gate classification.
        occupancy_rate=0.0,
        departure_rate=departure_rate(stage),
    )


def render_message(stage: Stage, analysis: AlertAnalysis) -> str:
    """Operator-facing text for a classified stage."""
    if analysis.time_remaining <= OVERDUE_HOURS:
        return f'Stage "{stage.name}" has ended'

    message = f'Stage "{stage.name}" {format_remaining(analysis.time_remaining)}'
    if analysis.occupancy_rate and analysis.priority != AlertPriority.LOW:
        message += f" — occupancy: {round(analysis.occupancy_rate)}%"
    return message


def build_alert_record(stage: Stage, analysis: AlertAnalysis) -> AlertRecord:
    """Assemble the insert payload for a classified stage."""
    return AlertRecord(
        stage_id=stage.id,
        type=analysis.priority,
        message=render_message(stage, analysis),
        channels=list(analysis.channels),
        metadata=AlertMetadata(
            time_remaining=analysis.time_remaining,
            occupancy_rate=analysis.occupancy_rate,
            departure_rate=analysis.departure_rate,
            current_pilgrims=stage.current_pilgrims,
            max_capacity=stage.max_pilgrims,
        ),
    )
