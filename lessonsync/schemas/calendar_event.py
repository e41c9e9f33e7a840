"""
Typed view of external calendar events.

``parse_event`` is the only code that reads raw Google Calendar payloads.
Everything downstream works with ``CalendarEvent``.
"""

from __future__ import annotations

from datetime import date, datetime
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import Field

from ..core.timezone_utils import ensure_utc
from .base import FrozenModel

logger = logging.getLogger(__name__)

TRANSPARENT = "transparent"
OPAQUE = "opaque"
BOOKING_ID_KEY = "booking_id"


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Returns None for anything unparsable; naive values are assumed UTC.
    """
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        logger.warning("Unparsable calendar timestamp", extra={"value": raw})
        return None


def _parse_date(raw: Any) -> Optional[date]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        logger.warning("Unparsable calendar date", extra={"value": raw})
        return None


class CalendarEvent(FrozenModel):
    """An event as seen by the scheduling core."""

    id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    transparency: str = OPAQUE
    recurrence: List[str] = Field(default_factory=list)
    recurring_event_id: Optional[str] = None
    private_properties: Dict[str, str] = Field(default_factory=dict)
    description: str = ""
    status: str = "confirmed"

    @property
    def is_all_day(self) -> bool:
        return self.start is None and self.start_date is not None

    @property
    def is_timed(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def is_free(self) -> bool:
        return self.transparency == TRANSPARENT

    @property
    def is_recurring_master(self) -> bool:
        return bool(self.recurrence)

    @property
    def booking_id(self) -> Optional[str]:
        value = (self.private_properties.get(BOOKING_ID_KEY) or "").strip()
        return value or None

    def timing(self) -> Optional[Tuple[datetime, datetime]]:
        """Return ``(start, end)`` when both are present and ``end > start``."""
        if self.start is None or self.end is None or self.end <= self.start:
            return None
        return self.start, self.end

    def private_int(self, key: str) -> Optional[int]:
        raw = self.private_properties.get(key)
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None


def parse_event(raw: Mapping[str, Any]) -> Optional[CalendarEvent]:
    """
    Build a CalendarEvent from a raw Google Calendar event resource.

    Returns None when the payload has no id. Unparsable timestamps become
    None rather than raising.
    """
    if not isinstance(raw, Mapping):
        return None
    event_id = str(raw.get("id") or "").strip()
    if not event_id:
        return None

    start_raw = raw.get("start") if isinstance(raw.get("start"), Mapping) else {}
    end_raw = raw.get("end") if isinstance(raw.get("end"), Mapping) else {}

    extended = raw.get("extendedProperties")
    private_raw = extended.get("private") if isinstance(extended, Mapping) else None
    private: Dict[str, str] = {}
    if isinstance(private_raw, Mapping):
        private = {str(k): str(v) for k, v in private_raw.items() if v is not None}

    recurrence_raw = raw.get("recurrence")
    recurrence = [str(r) for r in recurrence_raw] if isinstance(recurrence_raw, list) else []

    return CalendarEvent(
        id=event_id,
        start=parse_timestamp(start_raw.get("dateTime")),
        end=parse_timestamp(end_raw.get("dateTime")),
        start_date=_parse_date(start_raw.get("date")),
        end_date=_parse_date(end_raw.get("date")),
        transparency=str(raw.get("transparency") or OPAQUE).strip().lower(),
        recurrence=recurrence,
        recurring_event_id=raw.get("recurringEventId") or None,
        private_properties=private,
        description=str(raw.get("description") or ""),
        status=str(raw.get("status") or "confirmed"),
    )


def parse_events(items: Any) -> List[CalendarEvent]:
    """Parse an ``items`` list, skipping entries that are not events."""
    if not isinstance(items, list):
        return []
    events: List[CalendarEvent] = []
    for item in items:
        event = parse_event(item)
        if event is None:
            logger.warning("Skipping calendar item without an id")
            continue
        events.append(event)
    return events
