"""Pure functions that render an alert into per-channel notification records."""

from __future__ import annotations

from typing import Any

from src.core.types import Alert, AlertChannel, NotificationRecord

_PRIORITY_LABELS: dict[str, str] = {
    "critical": "Critical",
    "high": "High",
    "medium": "Medium",
    "low": "Low",
}


def alert_title(alert: Alert) -> str:
    label = _PRIORITY_LABELS.get(alert.type.value, alert.type.value)
    return f"{label} alert"


def email_subject(alert: Alert) -> str:
    return f"{alert_title(alert)} - stage {alert.stage_id}"


def _push_metadata(alert: Alert) -> dict[str, Any]:
    return {
        "priority": alert.type.value,
        "stage_id": alert.stage_id,
        **alert.metadata.model_dump(by_alias=True, exclude_none=True),
    }


def format_notification(alert: Alert, channel: AlertChannel) -> NotificationRecord:
    """Build the pending notification row for one channel of *alert*.

    Recipients are addressed by stage; the delivery function resolves the
    actual subscribers.
    """
    title = ""
    metadata: dict[str, Any] = {}

    if channel == AlertChannel.PUSH:
        title = alert_title(alert)
        metadata = _push_metadata(alert)
    elif channel == AlertChannel.EMAIL:
        title = email_subject(alert)

    return NotificationRecord(
        type=channel,
        alert_id=alert.id,
        recipient_id=alert.stage_id,
        title=title,
        message=alert.message,
        metadata=metadata,
    )
