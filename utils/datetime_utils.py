"""
Timezone-aware datetime utilities for the SEIDO import service.

All functions returning datetimes return timezone-aware objects in UTC,
except local_today() which returns a calendar date in the given zone.
"""

import calendar
from datetime import date, datetime, timezone, timedelta
from typing import Optional

import pytz

DEFAULT_TIMEZONE = 'Europe/Brussels'


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime object.

    Returns:
        datetime: Current UTC time with timezone information
    """
    return datetime.now(timezone.utc)


def utc_in_days(days: int) -> datetime:
    """UTC datetime `days` from now (negative for the past)"""
    return utc_now() + timedelta(days=days)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime object is timezone-aware and in UTC.

    Naive datetimes are assumed to already be UTC (SQLite drops tzinfo).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_today(tz_name: str = DEFAULT_TIMEZONE) -> date:
    """Calendar date in the given timezone; used for lease status"""
    return utc_now().astimezone(pytz.timezone(tz_name)).date()


def add_months(start: date, months: int) -> date:
    """
    Add calendar months to a date, clamping to the last day of the month.

    Example:
        >>> add_months(date(2024, 1, 31), 1)
        datetime.date(2024, 2, 29)
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def format_utc_iso(dt: Optional[datetime] = None) -> Optional[str]:
    """Format a datetime as an ISO string in UTC; None stays None"""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
