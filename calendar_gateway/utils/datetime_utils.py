from datetime import date, datetime, time, timezone
from email.utils import format_datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on the way back).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_to_utc(day: date, clock_time: time, tz_name: str) -> datetime:
    """
    Combine a local calendar date and wall-clock time in ``tz_name`` into a UTC instant.

    Falls back to UTC when the timezone name is unknown.
    """
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    return datetime.combine(day, clock_time.replace(tzinfo=None), tzinfo=tz).astimezone(
        timezone.utc
    )


def format_http_date(value: datetime) -> str:
    """RFC 7231 date, e.g. ``Fri, 10 Jan 2025 09:00:00 GMT``."""
    return format_datetime(ensure_utc(value), usegmt=True)
