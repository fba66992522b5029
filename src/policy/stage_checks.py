"""Sanity checks and derived figures for stage snapshots."""

from __future__ import annotations

from collections.abc import Iterable

from src.core.types import ConsistencyReport, Stage, StageStats, StageStatus

# Predecessor statuses whose departures count towards a waiting stage.
_FEEDER_STATUSES = frozenset({StageStatus.COMPLETED, StageStatus.ACTIVE})


def validate_stage_counts(stage: Stage) -> list[str]:
    """Return human-readable validation errors (empty when valid)."""
    errors: list[str] = []
    if stage.current_pilgrims < 0:
        errors.append("current pilgrim count cannot be negative")
    if stage.departed_count < 0:
        errors.append("departed count cannot be negative")
    if stage.required_departures < 0:
        errors.append("required departures cannot be negative")
    if stage.status == StageStatus.WAITING_DEPARTURE and not stage.nationality:
        errors.append("stages waiting for departure must set a nationality")
    return errors


def calculate_stage_stats(stage: Stage) -> StageStats:
    total = stage.current_pilgrims + stage.departed_count
    departure_pct = round(stage.departed_count / total * 100) if total else 0

    occupancy: float | None = None
    if stage.max_pilgrims:
        occupancy = stage.current_pilgrims / stage.max_pilgrims * 100

    return StageStats(
        total_pilgrims=total,
        remaining_pilgrims=stage.current_pilgrims,
        departure_percentage=departure_pct,
        occupancy_rate=occupancy,
    )


def check_stage_consistency(stages: Iterable[Stage]) -> ConsistencyReport:
    """Compare computed totals against the stored ``total_pilgrims``."""
    report = ConsistencyReport()
    for stage in stages:
        computed = calculate_stage_stats(stage).total_pilgrims
        stored = stage.total_pilgrims or stage.current_pilgrims
        if computed != stored:
            report.has_errors = True
            report.details.append(
                f'Stage "{stage.name}": computed total {computed}'
                f" != stored total {stored}"
            )
    return report


def find_activatable_stages(stages: Iterable[Stage]) -> list[int]:
    """IDs of waiting stages whose predecessors have met the departure target.

    A predecessor is an earlier stage (lower id) of the same nationality that
    is active or completed. Nothing is mutated; the caller decides whether to
    activate the returned stages.
    """
    snapshot = list(stages)
    ready: list[int] = []
    for waiting in snapshot:
        if waiting.status != StageStatus.WAITING_DEPARTURE:
            continue
        departed = sum(
            s.departed_count
            for s in snapshot
            if s.nationality == waiting.nationality
            and s.id < waiting.id
            and s.status in _FEEDER_STATUSES
        )
        if departed >= waiting.required_departures:
            ready.append(waiting.id)
    return ready
