"""In-process implementations of the storage contracts.

Used by hosts that keep stage state in memory and throughout the tests.
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Iterable

import structlog

from src.core.exceptions import AlertPersistenceError
from src.core.types import Alert, AlertRecord, NotificationRecord, Stage, StageStatus
from src.storage.base import (
    AlertStore,
    CallbackSubscription,
    NotificationStore,
    StageChangeHandler,
    StageRepository,
    Subscription,
)

logger = structlog.stdlib.get_logger()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class InMemoryStageRepository(StageRepository):
    """Stage repository backed by a dict; ``upsert`` emits change events.

    Usage::

        repo = InMemoryStageRepository()
        sub = await repo.subscribe(handler)
        await repo.upsert(stage)   # handler(None, stage)
        sub.cancel()
    """

    def __init__(self, stages: Iterable[Stage] = ()) -> None:
        self._stages: dict[int, Stage] = {s.id: s for s in stages}
        self._handlers: list[StageChangeHandler] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def get(self, stage_id: int) -> Stage | None:
        return self._stages.get(stage_id)

    async def list_stages(self, statuses: Iterable[StageStatus]) -> list[Stage]:
        wanted = set(statuses)
        return [s for s in self._stages.values() if s.status in wanted]

    async def subscribe(self, handler: StageChangeHandler) -> Subscription:
        self._handlers.append(handler)

        def _remove() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return CallbackSubscription(_remove)

    async def upsert(self, stage: Stage) -> None:
        """Store *stage* and notify subscribers with the previous snapshot."""
        old = self._stages.get(stage.id)
        self._stages[stage.id] = stage
        await self._emit(old, stage)

    async def _emit(self, old: Stage | None, new: Stage) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(old, new)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("stage_change_handler_error", stage_id=new.id)


class InMemoryAlertStore(AlertStore):
    """Alert store with sequential ids and resolve-once semantics."""

    def __init__(self) -> None:
        self._alerts: dict[int, Alert] = {}
        self._next_id = 1

    @property
    def alerts(self) -> list[Alert]:
        """All alerts in insertion order."""
        return list(self._alerts.values())

    async def insert_alert(self, record: AlertRecord) -> Alert:
        if record.is_resolved:
            raise AlertPersistenceError("New alerts must be unresolved")
        alert = Alert(
            id=self._next_id,
            created_at=_now(),
            **record.model_dump(),
        )
        self._alerts[alert.id] = alert
        self._next_id += 1
        return alert

    async def list_open_alerts(self) -> list[Alert]:
        open_alerts = [a for a in self._alerts.values() if not a.is_resolved]
        return sorted(open_alerts, key=lambda a: a.created_at, reverse=True)

    async def resolve_alert(self, alert_id: int) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertPersistenceError(f"Alert {alert_id} not found")
        if alert.is_resolved:
            return
        self._alerts[alert_id] = alert.model_copy(
            update={"is_resolved": True, "resolved_at": _now()},
        )


class InMemoryNotificationStore(NotificationStore):
    """Notification store with sequential ids."""

    def __init__(self) -> None:
        self._records: dict[int, NotificationRecord] = {}
        self._next_id = 1

    @property
    def records(self) -> list[NotificationRecord]:
        return list(self._records.values())

    async def insert_notification(self, record: NotificationRecord) -> NotificationRecord:
        stored = record.model_copy(update={"id": self._next_id, "created_at": _now()})
        self._records[stored.id] = stored  # type: ignore[index]
        self._next_id += 1
        return stored

    async def get_notification(self, notification_id: int) -> NotificationRecord | None:
        return self._records.get(notification_id)
