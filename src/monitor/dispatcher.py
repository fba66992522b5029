"""Notification fan-out — one independent attempt per alert channel."""

from __future__ import annotations

import structlog

from src.core.types import Alert, AlertChannel
from src.monitor.channels import ChannelSender
from src.monitor.formatters import format_notification
from src.storage.base import NotificationStore

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Routes a persisted alert to the senders for its channels.

    - ``in_app`` is satisfied by the alert row itself; nothing is sent.
    - Each other channel writes a pending notification record, then asks
      its sender to deliver.
    - A failure on one channel is logged and never stops the others. There
      are no retries and the alert row is never touched.
    """

    def __init__(
        self,
        senders: list[ChannelSender] | None = None,
        notification_store: NotificationStore | None = None,
    ) -> None:
        self._senders: dict[AlertChannel, ChannelSender] = {
            s.channel: s for s in senders or []
        }
        self._store = notification_store

    @property
    def channels(self) -> set[AlertChannel]:
        """Channels with a configured sender."""
        return set(self._senders)

    async def dispatch(self, alert: Alert) -> dict[AlertChannel, bool]:
        """Fan *alert* out to its channels. Returns per-channel success."""
        results: dict[AlertChannel, bool] = {}
        for channel in alert.channels:
            if channel == AlertChannel.IN_APP:
                results[channel] = True
                continue

            sender = self._senders.get(channel)
            if sender is None:
                logger.debug(
                    "channel_not_configured",
                    channel=channel.value,
                    alert_id=alert.id,
                )
                results[channel] = False
                continue

            results[channel] = await self._send_one(alert, channel, sender)
        return results

    async def _send_one(
        self,
        alert: Alert,
        channel: AlertChannel,
        sender: ChannelSender,
    ) -> bool:
        try:
            notification = format_notification(alert, channel)
            if self._store is not None:
                notification = await self._store.insert_notification(notification)
            await sender.send(alert, notification)
        except Exception:
            logger.exception(
                "channel_dispatch_error",
                channel=channel.value,
                alert_id=alert.id,
                stage_id=alert.stage_id,
            )
            return False

        logger.info(
            "notification_sent",
            channel=channel.value,
            alert_id=alert.id,
            notification_id=notification.id,
        )
        return True

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for sender in self._senders.values():
            try:
                await sender.close()
            except Exception:
                logger.exception("channel_close_error", channel=sender.channel.value)
