"""Domain types for stages, alerts, and outbound notifications."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StageStatus(StrEnum):
    """Lifecycle status of a stage."""

    PENDING = "pending"
    ACTIVE = "active"
    WAITING_DEPARTURE = "waiting_departure"
    COMPLETED = "completed"
    INACTIVE = "inactive"


class AlertPriority(StrEnum):
    """Alert priority, persisted as the alert ``type`` column."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertChannel(StrEnum):
    """Notification delivery medium."""

    PUSH = "push"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    IN_APP = "in_app"


class NotificationStatus(StrEnum):
    """Delivery status of an outbound notification record."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# ── Stage ───────────────────────────────────────────────────────


class Stage(BaseModel):
    """Snapshot of a time-boxed cohort-movement phase.

    Date and time are kept as the raw stored strings; they are only turned
    into instants by :func:`src.policy.clock.to_instant`, so a malformed row
    still loads and is skipped at classification time.
    """

    id: int
    name: str = ""
    status: StageStatus = StageStatus.PENDING
    start_date: str | None = None
    start_time: str | None = None
    end_date: str | None = None
    end_time: str | None = None
    current_pilgrims: int = 0
    departed_count: int = 0
    required_departures: int = 0
    max_pilgrims: int | None = None
    total_pilgrims: int | None = None
    nationality: str | None = None
    area_id: int | None = None
    pilgrim_group_id: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _coalesce_departures(cls, data: Any) -> Any:
        # Older rows only carry the per-stage ``departed_pilgrims`` column.
        if isinstance(data, dict) and data.get("departed_count") is None:
            if data.get("departed_pilgrims") is not None:
                data = {**data, "departed_count": data["departed_pilgrims"]}
        return data

    @field_validator(
        "current_pilgrims", "departed_count", "required_departures",
        mode="before",
    )
    @classmethod
    def _null_count_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


# ── Policy output ───────────────────────────────────────────────


class AlertAnalysis(BaseModel):
    """Result of classifying one stage at one instant. Never persisted."""

    priority: AlertPriority
    channels: list[AlertChannel]
    needs_alert: bool
    time_remaining: float
    occupancy_rate: float = 0.0
    departure_rate: float = 0.0


class AttentionFinding(BaseModel):
    """A condition flagged by the heuristic attention check."""

    reason: str
    priority: AlertPriority
    message: str


# ── Alerts ──────────────────────────────────────────────────────


class AlertMetadata(BaseModel):
    """Display-only figures attached to an alert (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    time_remaining: float | None = Field(default=None, alias="timeRemaining")
    occupancy_rate: float | None = Field(default=None, alias="occupancyRate")
    departure_rate: float | None = Field(default=None, alias="departureRate")
    current_pilgrims: int | None = Field(default=None, alias="currentPilgrims")
    max_capacity: int | None = Field(default=None, alias="maxCapacity")


class AlertRecord(BaseModel):
    """Alert insert payload; the store assigns ``id`` and ``created_at``."""

    stage_id: int
    type: AlertPriority
    message: str
    is_resolved: bool = False
    channels: list[AlertChannel] = Field(default_factory=list)
    metadata: AlertMetadata = Field(default_factory=AlertMetadata)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Alert(AlertRecord):
    """A persisted alert row."""

    id: int
    created_at: datetime.datetime
    resolved_at: datetime.datetime | None = None

    @field_validator("channels", mode="before")
    @classmethod
    def _null_channels(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


# ── Notifications ───────────────────────────────────────────────


class NotificationRecord(BaseModel):
    """Outbound notification row written before a channel send."""

    id: int | None = None
    type: AlertChannel
    alert_id: int
    recipient_id: int
    title: str = ""
    message: str = ""
    status: NotificationStatus = NotificationStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime.datetime | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json", exclude={"id", "created_at"}, exclude_none=True,
        )


# ── Stage checks ────────────────────────────────────────────────


class StageStats(BaseModel):
    """Headcount figures derived from a stage snapshot."""

    total_pilgrims: int
    remaining_pilgrims: int
    departure_percentage: int
    occupancy_rate: float | None = None


class ConsistencyReport(BaseModel):
    """Mismatches between computed and stored stage totals."""

    has_errors: bool = False
    details: list[str] = Field(default_factory=list)
