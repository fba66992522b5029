"""Channel senders — hand a persisted notification to a delivery backend."""

from __future__ import annotations

import abc

import aiohttp
import structlog

from src.core.config import BackendConfig
from src.core.exceptions import ChannelDeliveryError
from src.core.types import Alert, AlertChannel, NotificationRecord

logger = structlog.get_logger(__name__)


class ChannelSender(abc.ABC):
    """Base class for external delivery channels (push, SMS, WhatsApp, email)."""

    @property
    @abc.abstractmethod
    def channel(self) -> AlertChannel:
        """The channel this sender delivers on."""

    @abc.abstractmethod
    async def send(self, alert: Alert, notification: NotificationRecord) -> None:
        """Deliver *notification* for *alert*.

        Raises:
            ChannelDeliveryError: If the backend rejects or cannot be reached.
        """

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class RemoteFunctionSender(ChannelSender):
    """Invokes a named remote function (e.g. ``send-sms``) with the alert.

    The function owns subscriber lookup and provider delivery; this sender
    only needs a 2xx acknowledgement.
    """

    def __init__(
        self,
        channel: AlertChannel,
        function_name: str,
        config: BackendConfig,
    ) -> None:
        self._channel = channel
        self._function_name = function_name
        self._url = f"{config.functions_url}/{function_name}"
        self._api_key = config.api_key.get_secret_value()
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    @property
    def channel(self) -> AlertChannel:
        return self._channel

    @property
    def function_name(self) -> str:
        return self._function_name

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def send(self, alert: Alert, notification: NotificationRecord) -> None:
        payload = {
            "alert": alert.model_dump(mode="json", by_alias=True),
            "notification_id": notification.id,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            session = self._get_session()
            async with session.post(self._url, json=payload, headers=headers) as resp:
                if 200 <= resp.status < 300:
                    return
                body = await resp.text()
                raise ChannelDeliveryError(
                    f"{self._function_name} returned {resp.status}: {body[:200]}"
                )
        except aiohttp.ClientError as exc:
            raise ChannelDeliveryError(
                f"{self._function_name} request failed: {exc}"
            ) from exc

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
