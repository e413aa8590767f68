"""
Time helper utilities for consistent UTC handling and reminder rendering.
"""
from datetime import datetime, timezone
from typing import Optional

import pytz

from config import REMINDER_TIMEZONE


def utc_now() -> datetime:
    """Current instant, timezone-aware UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.
    Naive datetimes are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize(value: datetime, tz_name: str = None) -> datetime:
    """Convert a UTC instant into the display timezone"""
    tz = pytz.timezone(tz_name or REMINDER_TIMEZONE)
    return ensure_utc(value).astimezone(tz)


def format_reminder_date(value: datetime, tz_name: str = None) -> str:
    """e.g. 'November 11, 2025'"""
    local = localize(value, tz_name)
    return f"{local.strftime('%B')} {local.day}, {local.year}"


def format_reminder_time(value: datetime, tz_name: str = None) -> str:
    """e.g. '3:30 PM EST'"""
    local = localize(value, tz_name)
    hour = local.hour % 12 or 12
    return f"{hour}:{local.strftime('%M %p')} {local.tzname()}"
