"""Convenience factory for wiring the monitoring stack."""

from __future__ import annotations

from src.core.config import Settings, get_settings
from src.core.types import AlertChannel
from src.monitor.channels import ChannelSender, RemoteFunctionSender
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.scheduler import StageMonitor
from src.storage.rest import (
    RestAlertStore,
    RestClient,
    RestNotificationStore,
    RestStageRepository,
)

_EXTERNAL_CHANNELS = (
    AlertChannel.PUSH,
    AlertChannel.SMS,
    AlertChannel.WHATSAPP,
    AlertChannel.EMAIL,
)


def create_senders(settings: Settings) -> list[ChannelSender]:
    """One remote-function sender per enabled external channel."""
    senders: list[ChannelSender] = []
    for channel in _EXTERNAL_CHANNELS:
        cfg = getattr(settings.notifications, channel.value)
        if cfg.enabled:
            senders.append(
                RemoteFunctionSender(channel, cfg.function_name, settings.backend)
            )
    return senders


def create_monitor_stack(
    settings: Settings | None = None,
) -> tuple[StageMonitor, RestClient]:
    """Build a REST-backed monitor from config.

    The caller owns the returned client: ``connect()`` it before
    ``monitor.start()`` and ``close()`` it after ``monitor.stop()``.

    Returns:
        (monitor, rest_client)
    """
    settings = settings or get_settings()
    client = RestClient(settings.backend)

    dispatcher = NotificationDispatcher(
        senders=create_senders(settings),
        notification_store=RestNotificationStore(client),
    )
    monitor = StageMonitor(
        repository=RestStageRepository(client),
        alert_store=RestAlertStore(client),
        dispatcher=dispatcher,
        config=settings.monitor,
    )
    return monitor, client
