"""
Clock helpers.
Timestamps are stored in UTC; "today" for date rules is the calendar day in
the configured business timezone.
"""
from datetime import date, datetime
from typing import Optional
import pytz
from ..config import settings


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def local_today(timezone_str: Optional[str] = None) -> date:
    """
    Current calendar date in the given timezone.

    Args:
        timezone_str: Timezone string (default from settings)

    Returns:
        Local date
    """
    try:
        tz = pytz.timezone(timezone_str or settings.tz_default)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return datetime.now(tz).date()
