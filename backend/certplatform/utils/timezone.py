"""
Time helpers.

All timestamps are stored as naive UTC; conversion to the configured display
timezone happens only when formatting for people.
"""
import calendar
from datetime import datetime, timezone
import pytz

from ..core.config import settings


def utcnow() -> datetime:
    """Current time as naive UTC, matching the database columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_display_tz():
    return pytz.timezone(settings.default_timezone)


def utc_to_display(utc_dt: datetime) -> datetime:
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=pytz.UTC)
    return utc_dt.astimezone(get_display_tz())


def format_certificate_date(dt: datetime) -> str:
    """e.g. 'October 19, 2026'"""
    local = utc_to_display(dt)
    return f"{local.strftime('%B')} {local.day}, {local.year}"


def add_months(dt: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)
