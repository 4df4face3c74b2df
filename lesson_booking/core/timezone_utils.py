"""
Timezone utilities for the booking engine.

Availability windows are wall-clock times in the teacher's timezone; every
instant the engine stores or compares is UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz


def resolve_timezone(name: Optional[str], default: str = "UTC") -> pytz.BaseTzInfo:
    """Return a pytz timezone, falling back to ``default`` for unknown names."""
    try:
        return pytz.timezone(name or default)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(default)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    SQLite drops tzinfo on round-trip, so naive values read back from the
    database are treated as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_of_week(target: date) -> int:
    """Day index with 0 = Sunday ... 6 = Saturday."""
    return (target.weekday() + 1) % 7


def local_to_utc(target: date, wall_time: time, tz: pytz.BaseTzInfo) -> datetime:
    """Convert a local wall-clock time on ``target`` to an aware UTC instant."""
    # is_dst=False picks the standard-time reading for ambiguous/non-existent times
    local = tz.localize(datetime.combine(target, wall_time), is_dst=False)
    return tz.normalize(local).astimezone(timezone.utc)


def local_day_bounds_utc(target: date, tz: pytz.BaseTzInfo) -> Tuple[datetime, datetime]:
    """Return the UTC instants bounding the teacher-local day [00:00, next 00:00)."""
    start = local_to_utc(target, time(0, 0), tz)
    end = local_to_utc(target + timedelta(days=1), time(0, 0), tz)
    return start, end


def to_local(value: datetime, tz: pytz.BaseTzInfo) -> datetime:
    return ensure_utc(value).astimezone(tz)
