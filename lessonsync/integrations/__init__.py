"""External service integrations for the lesson scheduling core."""

from .google_calendar_client import (
    CalendarApiError,
    CalendarClient,
    FakeCalendarClient,
    GoogleCalendarClient,
    create_calendar_client,
)

__all__ = [
    "CalendarApiError",
    "CalendarClient",
    "FakeCalendarClient",
    "GoogleCalendarClient",
    "create_calendar_client",
]
