"""Stage monitoring, alert creation, and notification fan-out."""

from src.monitor.channels import ChannelSender, RemoteFunctionSender
from src.monitor.dispatcher import NotificationDispatcher
from src.monitor.factory import create_monitor_stack, create_senders
from src.monitor.formatters import format_notification
from src.monitor.scheduler import StageMonitor

__all__ = [
    "ChannelSender",
    "NotificationDispatcher",
    "RemoteFunctionSender",
    "StageMonitor",
    "create_monitor_stack",
    "create_senders",
    "format_notification",
]
