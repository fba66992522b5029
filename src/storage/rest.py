"""REST adapters over a PostgREST-style row store (e.g. Supabase)."""

from __future__ import annotations

import datetime
from collections.abc import Iterable
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.core.config import BackendConfig, get_settings
from src.core.exceptions import (
    AlertPersistenceError,
    MonitorError,
    RepositoryUnavailableError,
)
from src.core.types import Alert, AlertRecord, NotificationRecord, Stage, StageStatus
from src.storage.base import (
    AlertStore,
    NotificationStore,
    StageChangeHandler,
    StageRepository,
    Subscription,
)
from src.storage.polling import PollingSubscription

logger = structlog.stdlib.get_logger()

_STAGE_COLUMNS = (
    "id,name,status,start_date,start_time,end_date,end_time,"
    "current_pilgrims,departed_pilgrims,departed_count,required_departures,"
    "max_pilgrims,total_pilgrims,nationality,area_id,pilgrim_group_id"
)


def _status_filter(statuses: Iterable[StageStatus]) -> str:
    return "in.(" + ",".join(s.value for s in statuses) + ")"


class RestClient:
    """Thin httpx wrapper that maps transport failures onto one error type.

    Shared by the repository and both stores so a host opens one connection
    pool for the whole backend.
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or get_settings().backend
        self._http = http

    @property
    def config(self) -> BackendConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> None:
        if self.connected:
            return
        key = self._config.api_key.get_secret_value()
        self._http = httpx.AsyncClient(
            base_url=self._config.rest_url,
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=httpx.Timeout(self._config.timeout_secs),
        )

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def request(
        self,
        method: str,
        table: str,
        error_cls: type[MonitorError],
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Issue a request and return the decoded JSON body (None if empty)."""
        if self._http is None:
            raise error_cls("REST client not connected")
        try:
            response = await self._http.request(
                method, f"/{table}", params=params, json=json, headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise error_cls(
                f"{method} {table} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{method} {table} failed: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise error_cls(f"{method} {table} returned invalid JSON") from exc


class RestStageRepository(StageRepository):
    """Stage listing over REST; changes are detected by polling."""

    def __init__(self, client: RestClient) -> None:
        self._client = client
        self._table = client.config.stages_table

    async def list_stages(self, statuses: Iterable[StageStatus]) -> list[Stage]:
        rows = await self._client.request(
            "GET",
            self._table,
            RepositoryUnavailableError,
            params={"select": _STAGE_COLUMNS, "status": _status_filter(statuses)},
        )
        return self._parse_rows(rows)

    async def list_all(self) -> list[Stage]:
        rows = await self._client.request(
            "GET",
            self._table,
            RepositoryUnavailableError,
            params={"select": _STAGE_COLUMNS},
        )
        return self._parse_rows(rows)

    async def subscribe(self, handler: StageChangeHandler) -> Subscription:
        subscription = PollingSubscription(
            self.list_all,
            handler,
            interval_secs=self._client.config.change_poll_interval_secs,
        )
        await subscription.start()
        return subscription

    @staticmethod
    def _parse_rows(rows: Any) -> list[Stage]:
        if not isinstance(rows, list):
            raise RepositoryUnavailableError("Stage listing is not a JSON array")
        stages: list[Stage] = []
        for row in rows:
            try:
                stages.append(Stage.model_validate(row))
            except ValidationError:
                row_id = row.get("id") if isinstance(row, dict) else None
                logger.warning("stage_row_invalid", row_id=row_id)
        return stages


class RestAlertStore(AlertStore):
    """Alert rows over REST."""

    def __init__(self, client: RestClient) -> None:
        self._client = client
        self._table = client.config.alerts_table

    async def insert_alert(self, record: AlertRecord) -> Alert:
        rows = await self._client.request(
            "POST",
            self._table,
            AlertPersistenceError,
            json=record.to_row(),
            headers={"Prefer": "return=representation"},
        )
        if not isinstance(rows, list) or not rows:
            raise AlertPersistenceError("Alert insert returned no row")
        try:
            return Alert.model_validate(rows[0])
        except ValidationError as exc:
            raise AlertPersistenceError("Alert insert returned a malformed row") from exc

    async def list_open_alerts(self) -> list[Alert]:
        rows = await self._client.request(
            "GET",
            self._table,
            AlertPersistenceError,
            params={
                "select": "*",
                "is_resolved": "eq.false",
                "order": "created_at.desc",
            },
        )
        if not isinstance(rows, list):
            raise AlertPersistenceError("Alert listing is not a JSON array")
        return [Alert.model_validate(r) for r in rows]

    async def resolve_alert(self, alert_id: int) -> None:
        # The is_resolved filter keeps resolved_at from being overwritten.
        await self._client.request(
            "PATCH",
            self._table,
            AlertPersistenceError,
            params={"id": f"eq.{alert_id}", "is_resolved": "eq.false"},
            json={
                "is_resolved": True,
                "resolved_at": datetime.datetime.now(datetime.UTC).isoformat(),
            },
        )


class RestNotificationStore(NotificationStore):
    """Outbound notification rows over REST."""

    def __init__(self, client: RestClient) -> None:
        self._client = client
        self._table = client.config.notifications_table

    async def insert_notification(self, record: NotificationRecord) -> NotificationRecord:
        rows = await self._client.request(
            "POST",
            self._table,
            AlertPersistenceError,
            json=record.to_row(),
            headers={"Prefer": "return=representation"},
        )
        if isinstance(rows, list) and rows:
            return NotificationRecord.model_validate(rows[0])
        return record

    async def get_notification(self, notification_id: int) -> NotificationRecord | None:
        rows = await self._client.request(
            "GET",
            self._table,
            AlertPersistenceError,
            params={"select": "*", "id": f"eq.{notification_id}"},
        )
        if not isinstance(rows, list) or not rows:
            return None
        return NotificationRecord.model_validate(rows[0])
