"""
Timezone-aware datetime utilities.

All functions return timezone-aware datetime objects in UTC. SQLite hands
back naive datetimes after a reload, so anything compared against "now"
should go through ensure_utc() first.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no timezone), it assumes UTC.
    If the datetime has a different timezone, it converts to UTC.

    Args:
        dt: Datetime object (may be naive or timezone-aware)

    Returns:
        datetime: Timezone-aware datetime in UTC

    Example:
        >>> naive_dt = datetime(2025, 1, 1, 12, 0, 0)
        >>> utc_dt = ensure_utc(naive_dt)
        >>> print(utc_dt.tzinfo)  # UTC
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo != timezone.utc:
        return dt.astimezone(timezone.utc)
    return dt


def utc_hours_from_now(hours: int) -> datetime:
    """Get a UTC datetime the given number of hours in the future."""
    return utc_now() + timedelta(hours=hours)


def milliseconds_since(dt: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole milliseconds elapsed between dt and now (negative if dt is in the future).

    Args:
        dt: Earlier datetime (naive values are treated as UTC)
        now: Reference point, defaults to utc_now()
    """
    reference = ensure_utc(now) if now else utc_now()
    return int((reference - ensure_utc(dt)).total_seconds() * 1000)


def format_utc_iso(dt: Optional[datetime] = None) -> Optional[str]:
    """
    Format a datetime as an ISO 8601 string in UTC.

    Args:
        dt: Datetime to format

    Returns:
        str: ISO 8601 formatted string, or None when dt is None

    Example:
        >>> format_utc_iso(datetime(2025, 1, 1, 12, 0))
        '2025-01-01T12:00:00+00:00'
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
