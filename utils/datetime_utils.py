"""
Timezone-aware datetime utilities.

All helpers return timezone-aware UTC datetimes unless the name says otherwise.
Database columns are stored as naive UTC, so ``naive_utc`` exists for the
places where a value is bound into a query or written to a column.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional, Union
import pytz


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def naive_utc(dt: Optional[datetime] = None) -> datetime:
    """
    Convert a datetime (or now) to naive UTC for storage and query binding.

    Args:
        dt: Datetime to convert (defaults to current UTC time)

    Returns:
        datetime: Naive datetime expressed in UTC
    """
    return ensure_utc(dt if dt is not None else utc_now()).replace(tzinfo=None)


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


def utc_to_local(dt: datetime, local_tz: str = 'UTC') -> datetime:
    """
    Convert a UTC datetime to a local timezone.

    Args:
        dt: UTC datetime (naive values are treated as UTC)
        local_tz: Target timezone name

    Returns:
        datetime: Datetime in the specified local timezone
    """
    local_timezone = pytz.timezone(local_tz)
    return ensure_utc(dt).astimezone(local_timezone)


def utc_days_ago(days: Union[int, float], now: Optional[datetime] = None) -> datetime:
    """
    Get a UTC datetime for a (possibly fractional) number of days ago.

    Args:
        days: Number of days in the past
        now: Reference time (defaults to current UTC time)

    Returns:
        datetime: Timezone-aware datetime in UTC
    """
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference - timedelta(days=days)


def parse_utc_iso(iso_string: str) -> datetime:
    """
    Parse an ISO 8601 string to a timezone-aware UTC datetime.

    Args:
        iso_string: ISO 8601 formatted datetime string

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If the string is not a valid ISO 8601 datetime

    Example:
        >>> dt = parse_utc_iso('2025-01-01T12:00:00Z')
        >>> print(dt.tzinfo)  # UTC
    """
    if iso_string.endswith('Z'):
        iso_string = iso_string[:-1] + '+00:00'

    dt = datetime.fromisoformat(iso_string)
    return ensure_utc(dt)


def format_utc_iso(dt: Optional[datetime] = None) -> Optional[str]:
    """Format a datetime as an ISO 8601 string in UTC (None stays None)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
