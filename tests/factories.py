"""Builders shared by the test suite."""

from datetime import datetime, timezone
from typing import Optional

CALENDAR_ID = "teacher%40example.com"


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def lesson_event(
    event_id: str,
    start: datetime,
    end: datetime,
    booking_id: Optional[str] = None,
    transparency: str = "opaque",
    **extra,
) -> dict:
    """Raw Google-shaped event payload."""
    payload = {
        "id": event_id,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
        "transparency": transparency,
    }
    if booking_id:
        payload["extendedProperties"] = {"private": {"booking_id": booking_id}}
    payload.update(extra)
    return payload
