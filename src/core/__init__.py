"""Core module — config, types, exceptions, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.exceptions import (
    AlertPersistenceError,
    ChannelDeliveryError,
    InvalidTimeFormatError,
    MonitorError,
    RepositoryUnavailableError,
)
from src.core.logging import setup_logging
from src.core.types import (
    Alert,
    AlertAnalysis,
    AlertChannel,
    AlertMetadata,
    AlertPriority,
    AlertRecord,
    NotificationRecord,
    Stage,
    StageStatus,
)

__all__ = [
    "Alert",
    "AlertAnalysis",
    "AlertChannel",
    "AlertMetadata",
    "AlertPersistenceError",
    "AlertPriority",
    "AlertRecord",
    "ChannelDeliveryError",
    "InvalidTimeFormatError",
    "MonitorError",
    "NotificationRecord",
    "RepositoryUnavailableError",
    "Settings",
    "Stage",
    "StageStatus",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
