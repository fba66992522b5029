"""Exception hierarchy for the stage monitor."""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for all stage monitor errors."""


class InvalidTimeFormatError(MonitorError):
    """A stage date or time field could not be parsed."""


class RepositoryUnavailableError(MonitorError):
    """Listing stages or subscribing to stage changes failed."""


class AlertPersistenceError(MonitorError):
    """Inserting, listing, or resolving an alert failed."""


class ChannelDeliveryError(MonitorError):
    """A single notification channel failed to deliver."""
