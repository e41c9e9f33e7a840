"""
Timezone utilities for the scheduling core.

Provides instructor-based timezone support. All stored instants are UTC;
local civil time only appears when interpreting a requested date range or
configured working hours.
"""

from datetime import date, datetime, time, timedelta
import logging
from typing import Optional, Tuple

import pytz

logger = logging.getLogger(__name__)


def get_timezone(name: Optional[str], default: str = "UTC") -> pytz.BaseTzInfo:
    """
    Resolve a timezone name, falling back to ``default`` when unknown.

    Args:
        name: IANA timezone name (may be empty)
        default: Timezone used when ``name`` is missing or invalid

    Returns:
        pytz timezone object
    """
    cleaned = (name or "").strip()
    if cleaned:
        try:
            return pytz.timezone(cleaned)
        except pytz.UnknownTimeZoneError:
            logger.warning("Unknown timezone %r; using %s", cleaned, default)
    return pytz.timezone(default)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime, assuming UTC for naive input."""
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def localize(day: date, at: time, tz: pytz.BaseTzInfo) -> datetime:
    """Combine a local date and wall-clock time into an aware UTC datetime."""
    return tz.localize(datetime.combine(day, at)).astimezone(pytz.UTC)


def local_range_to_utc(
    start_date: date, end_date: date, tz: pytz.BaseTzInfo
) -> Tuple[datetime, datetime]:
    """
    Convert an inclusive local date range into a UTC query window.

    The window starts at local midnight of ``start_date`` and ends at local
    midnight after ``end_date``.
    """
    start_utc = localize(start_date, time.min, tz)
    end_utc = localize(end_date + timedelta(days=1), time.min, tz)
    return start_utc, end_utc


def iter_days(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
