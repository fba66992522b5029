"""Time helpers — stored date/time pairs to instants, signed hour deltas."""

from __future__ import annotations

import datetime
import math
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core.exceptions import InvalidTimeFormatError

_SECONDS_PER_HOUR = 3600.0


def resolve_timezone(name: str) -> datetime.tzinfo:
    """Return the tzinfo for an IANA zone name ("UTC" needs no tz database)."""
    if name.upper() == "UTC":
        return datetime.UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def to_instant(
    date_str: str | None,
    time_str: str | None,
    tz: datetime.tzinfo = datetime.UTC,
) -> datetime.datetime:
    """Combine a stored ``YYYY-MM-DD`` date and ``HH:MM[:SS]`` time.

    The pair is read as wall-clock time in *tz* and returned as an aware
    datetime.

    Raises:
        InvalidTimeFormatError: If either part is missing or unparseable.
    """
    if not date_str or not time_str:
        raise InvalidTimeFormatError(
            f"Missing date or time: date={date_str!r} time={time_str!r}"
        )
    try:
        day = datetime.date.fromisoformat(date_str.strip())
        clock = datetime.time.fromisoformat(time_str.strip())
    except (ValueError, AttributeError) as exc:
        raise InvalidTimeFormatError(
            f"Cannot parse date={date_str!r} time={time_str!r}"
        ) from exc

    instant = datetime.datetime.combine(day, clock)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=tz)
    return instant


def hours_remaining(now: datetime.datetime, end: datetime.datetime) -> float:
    """Signed hours from *now* until *end*; negative means overdue."""
    return (end - now).total_seconds() / _SECONDS_PER_HOUR


def format_remaining(hours: float) -> str:
    """Human-readable remaining-time phrase. Display only."""
    if hours <= 0:
        return "past due"
    if hours <= 1:
        return "under one hour remaining"
    # Half-up rounding to the nearest whole hour.
    return f"approximately {math.floor(hours + 0.5)} hours remaining"
