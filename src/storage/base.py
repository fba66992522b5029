"""Collaborator contracts — stage repository, alert store, notification store."""

from __future__ import annotations

import abc
from collections.abc import Awaitable, Callable, Iterable

from src.core.types import Alert, AlertRecord, NotificationRecord, Stage, StageStatus

# Called with (previous snapshot or None, new snapshot).
StageChangeHandler = Callable[[Stage | None, Stage], Awaitable[None] | None]


class Subscription(abc.ABC):
    """Handle for an active stage-change subscription."""

    @abc.abstractmethod
    def cancel(self) -> None:
        """Stop delivering change notifications. Safe to call twice."""

    @property
    @abc.abstractmethod
    def active(self) -> bool:
        """Whether notifications are still being delivered."""


class CallbackSubscription(Subscription):
    """Subscription that runs a callback once on cancel."""

    def __init__(self, on_cancel: Callable[[], None]) -> None:
        self._on_cancel: Callable[[], None] | None = on_cancel

    def cancel(self) -> None:
        if self._on_cancel is not None:
            on_cancel, self._on_cancel = self._on_cancel, None
            on_cancel()

    @property
    def active(self) -> bool:
        return self._on_cancel is not None


class StageRepository(abc.ABC):
    """Read access to stages plus a change feed."""

    @abc.abstractmethod
    async def list_stages(self, statuses: Iterable[StageStatus]) -> list[Stage]:
        """Return all stages whose status is in *statuses*.

        Raises:
            RepositoryUnavailableError: If the backing store cannot be read.
        """

    @abc.abstractmethod
    async def subscribe(self, handler: StageChangeHandler) -> Subscription:
        """Deliver every stage mutation to *handler* until cancelled.

        Raises:
            RepositoryUnavailableError: If the change feed cannot be opened.
        """


class AlertStore(abc.ABC):
    """Persistence for alerts."""

    @abc.abstractmethod
    async def insert_alert(self, record: AlertRecord) -> Alert:
        """Persist *record*; the store assigns ``id`` and ``created_at``.

        Raises:
            AlertPersistenceError: If the insert fails.
        """

    @abc.abstractmethod
    async def list_open_alerts(self) -> list[Alert]:
        """Return unresolved alerts, newest first."""

    @abc.abstractmethod
    async def resolve_alert(self, alert_id: int) -> None:
        """Mark an alert resolved. Already-resolved alerts are left untouched."""


class NotificationStore(abc.ABC):
    """Persistence for outbound notification records."""

    @abc.abstractmethod
    async def insert_notification(self, record: NotificationRecord) -> NotificationRecord:
        """Persist *record* and return it with ``id`` assigned."""

    @abc.abstractmethod
    async def get_notification(self, notification_id: int) -> NotificationRecord | None:
        """Look up a notification (for delivery status tracking)."""
