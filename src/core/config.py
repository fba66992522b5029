"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr, model_validator

from src.core.types import StageStatus

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

# Remote function invoked per channel when the YAML does not name one.
_DEFAULT_FUNCTION_NAMES: dict[str, str] = {
    "push": "send-push-notification",
    "sms": "send-sms",
    "whatsapp": "send-whatsapp",
    "email": "send-email",
}


class MonitorConfig(BaseModel):
    """Stage monitor scheduling and policy configuration."""

    poll_interval_secs: float = 300.0
    monitored_statuses: list[StageStatus] = [
        StageStatus.ACTIVE,
        StageStatus.WAITING_DEPARTURE,
        StageStatus.COMPLETED,
    ]
    diagnostic_statuses: list[StageStatus] = [
        StageStatus.ACTIVE,
        StageStatus.WAITING_DEPARTURE,
    ]
    # Off by default: every qualifying pass inserts a new alert row. When on,
    # an open alert with the same (stage, priority) blocks a new one from the
    # periodic, reactive and diagnostic paths alike.
    suppress_duplicate_open_alerts: bool = False
    capacity_ceiling: int = 15000
    timezone: str = "UTC"


class BackendConfig(BaseModel):
    """Hosted row store (PostgREST-style) configuration."""

    url: str = "http://localhost:54321"
    api_key: SecretStr = SecretStr("")
    timeout_secs: float = 10.0
    stages_table: str = "stages"
    alerts_table: str = "stage_alerts"
    notifications_table: str = "notifications"
    change_poll_interval_secs: float = 15.0

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1"

    @property
    def functions_url(self) -> str:
        return f"{self.url.rstrip('/')}/functions/v1"


class ChannelConfig(BaseModel):
    """A single external delivery channel."""

    enabled: bool = False
    function_name: str = ""


class NotificationsConfig(BaseModel):
    """Container for all external channel configurations."""

    push: ChannelConfig = ChannelConfig()
    sms: ChannelConfig = ChannelConfig()
    whatsapp: ChannelConfig = ChannelConfig()
    email: ChannelConfig = ChannelConfig()

    @model_validator(mode="after")
    def _fill_function_names(self) -> NotificationsConfig:
        for channel, name in _DEFAULT_FUNCTION_NAMES.items():
            cfg: ChannelConfig = getattr(self, channel)
            if not cfg.function_name:
                cfg.function_name = name
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    # JSON-lines audit file for created alerts; empty disables it.
    decision_log_path: str = ""


class Settings(BaseModel):
    """Root settings container."""

    monitor: MonitorConfig = MonitorConfig()
    backend: BackendConfig = BackendConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
