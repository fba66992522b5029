"""Storage collaborators — stage repository, alert and notification stores."""

from src.storage.base import (
    AlertStore,
    CallbackSubscription,
    NotificationStore,
    StageChangeHandler,
    StageRepository,
    Subscription,
)
from src.storage.memory import (
    InMemoryAlertStore,
    InMemoryNotificationStore,
    InMemoryStageRepository,
)
from src.storage.polling import PollingSubscription, diff_stages
from src.storage.rest import (
    RestAlertStore,
    RestClient,
    RestNotificationStore,
    RestStageRepository,
)

__all__ = [
    "AlertStore",
    "CallbackSubscription",
    "InMemoryAlertStore",
    "InMemoryNotificationStore",
    "InMemoryStageRepository",
    "NotificationStore",
    "PollingSubscription",
    "RestAlertStore",
    "RestClient",
    "RestNotificationStore",
    "RestStageRepository",
    "StageChangeHandler",
    "StageRepository",
    "Subscription",
    "diff_stages",
]
