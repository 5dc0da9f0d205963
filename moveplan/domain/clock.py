"""Date/time helpers shared by all components."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA timezone name, defaulting to UTC."""
    if not name or name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def ensure_aware(dt: datetime, tz: tzinfo = UTC) -> datetime:
    """Normalize a datetime to be timezone-aware.

    Naive datetimes are interpreted as wall-clock time in ``tz``; aware
    datetimes are left untouched.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt


def at(day: date, wall_clock: time, tz: tzinfo) -> datetime:
    """Absolute instant for a wall-clock time on a given day."""
    return datetime.combine(day, wall_clock, tzinfo=tz)


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return [start, end) of a calendar day in ``tz``."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def local_day(dt: datetime, tz: tzinfo) -> date:
    return ensure_aware(dt, tz).astimezone(tz).date()


def minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


def format_hm(dt: datetime, tz: tzinfo | None = None) -> str:
    """Format an instant as HH:MM (in ``tz`` when given)."""
    if tz is not None:
        dt = dt.astimezone(tz)
    return dt.strftime("%H:%M")
