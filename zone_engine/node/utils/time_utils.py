"""
Unified time utilities for the zone engine.

Ensures consistent timestamp handling across:
- ZoneManager (persistent snapshot JSON, zone end times)
- RunLogger (run log entries)
- ScheduleTrigger (minute matching)
"""

import math
from datetime import datetime, timedelta, timezone


def now(utc: bool = False) -> datetime:
    """Return current datetime without microseconds."""
    if utc:
        return datetime.now(timezone.utc).replace(microsecond=0)
    return datetime.now().replace(microsecond=0)


def now_iso(utc: bool = False) -> str:
    """Return current time as ISO8601 string without microseconds."""
    return now(utc=utc).isoformat()


def to_iso(dt: datetime | None) -> str | None:
    """Convert datetime to ISO8601 without microseconds."""
    if dt is None:
        return None
    return dt.replace(microsecond=0).isoformat()


def from_iso(iso_str: str | None) -> datetime | None:
    """Convert ISO8601 string to datetime."""
    if iso_str is None:
        return None
    return datetime.fromisoformat(iso_str)


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """
    Calculate elapsed whole seconds between two datetimes (floored).

    :raises ValueError: if either start or end is None.
    """
    if start is None or end is None:
        raise ValueError("Both 'start' and 'end' must be valid datetime objects.")
    delta = end - start
    return math.floor(delta.total_seconds())


def seconds_until(target: datetime, reference: datetime) -> int:
    """Whole seconds from reference until target, never negative."""
    return max(0, math.floor((target - reference).total_seconds()))


def hours_until(target: datetime, reference: datetime) -> int:
    """Hours from reference until target, rounded up, never negative."""
    remaining = (target - reference).total_seconds()
    return max(0, math.ceil(remaining / 3600))


def add_seconds(dt: datetime, seconds: float) -> datetime:
    return dt + timedelta(seconds=seconds)


def day_of_week(dt: datetime) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return (dt.weekday() + 1) % 7


def minute_key(dt: datetime) -> str:
    """HH:MM representation of the wall-clock minute."""
    return dt.strftime("%H:%M")
