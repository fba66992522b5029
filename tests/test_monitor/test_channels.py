"""Tests for channel senders — HTTP mocking, error handling, session management."""

from __future__ import annotations

import datetime
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from pydantic import SecretStr

from src.core.config import BackendConfig
from src.core.exceptions import ChannelDeliveryError
from src.core.types import Alert, AlertChannel, AlertPriority, NotificationRecord
from src.monitor.channels import RemoteFunctionSender

# ── Helpers ─────────────────────────────────────────────────────


def _alert() -> Alert:
    return Alert(
        id=3,
        stage_id=8,
        type=AlertPriority.HIGH,
        message="m",
        created_at=datetime.datetime(2025, 6, 15, 12, tzinfo=datetime.UTC),
        channels=[AlertChannel.SMS],
    )


def _notification() -> NotificationRecord:
    return NotificationRecord(
        id=21, type=AlertChannel.SMS, alert_id=3, recipient_id=8, message="m",
    )


def _sender() -> RemoteFunctionSender:
    config = BackendConfig(url="https://db.test", api_key=SecretStr("fake-key"))
    return RemoteFunctionSender(AlertChannel.SMS, "send-sms", config)


def _mock_response(status: int = 200, text: str = "ok") -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _mock_session(resp: AsyncMock) -> MagicMock:
    session = MagicMock()
    session.post = MagicMock(return_value=resp)
    session.closed = False
    return session


# ── RemoteFunctionSender ────────────────────────────────────────


class TestRemoteFunctionSender:
    async def test_send_success(self) -> None:
        sender = _sender()
        session = _mock_session(_mock_response(200))
        sender._session = session

        await sender.send(_alert(), _notification())

        session.post.assert_called_once()
        call_args = session.post.call_args
        assert call_args[0][0] == "https://db.test/functions/v1/send-sms"
        payload = call_args[1]["json"]
        assert payload["notification_id"] == 21
        assert payload["alert"]["stage_id"] == 8
        assert payload["alert"]["type"] == "high"
        assert call_args[1]["headers"]["Authorization"] == "Bearer fake-key"

    async def test_send_failure_status(self) -> None:
        sender = _sender()
        sender._session = _mock_session(_mock_response(500, "boom"))
        with pytest.raises(ChannelDeliveryError, match="500"):
            await sender.send(_alert(), _notification())

    async def test_send_client_error(self) -> None:
        sender = _sender()
        session = MagicMock()
        session.post = MagicMock(side_effect=aiohttp.ClientError("refused"))
        session.closed = False
        sender._session = session
        with pytest.raises(ChannelDeliveryError, match="refused"):
            await sender.send(_alert(), _notification())

    def test_properties(self) -> None:
        sender = _sender()
        assert sender.channel == AlertChannel.SMS
        assert sender.function_name == "send-sms"

    async def test_close(self) -> None:
        sender = _sender()
        session = MagicMock()
        session.closed = False
        session.close = AsyncMock()
        sender._session = session
        await sender.close()
        session.close.assert_awaited_once()
        assert sender._session is None

    async def test_close_without_session(self) -> None:
        sender = _sender()
        await sender.close()
