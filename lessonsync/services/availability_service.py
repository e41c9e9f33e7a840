# lessonsync/services/availability_service.py
"""
Availability Service for the lesson scheduler.

Derives bookable slots for an instructor over a local date range:

1. Candidate windows come from one of two strategies, fixed working hours or
   events the instructor marked "Show as: Free".
2. Busy time is gathered per event from the calendar plus the local booking
   ledger (in-person lessons padded by the travel buffer).
3. Busy time is subtracted from the windows and the remainder is cut into
   fixed-length slots.

A calendar failure is surfaced as UpstreamError. It is never treated as an
empty calendar, since that would offer already-taken time.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from ..core.config import SchedulingConfig
from ..core.exceptions import (
    ConfigurationError,
    InvalidDataError,
    UpstreamError,
    ValidationException,
)
from ..core.timezone_utils import get_timezone, iter_days, local_range_to_utc, localize
from ..domain.intervals import (
    Interval,
    drop_overlapping,
    merge_busy,
    merge_free_windows,
    subtract,
)
from ..integrations.google_calendar_client import CalendarApiError, CalendarClient
from ..models.booking import Booking
from ..models.instructor import Instructor
from ..repositories.booking_repository import BookingRepository
from ..schemas.calendar_event import CalendarEvent, parse_timestamp
from .availability_cache import AvailabilityCache
from .base import BaseService
from .slot_builder import build_slots, clamp_slot_minutes

logger = logging.getLogger(__name__)

GOOGLE_SOURCE = "google"
DB_SOURCE = "db"
MAX_RANGE_DAYS = 62


@dataclass(frozen=True)
class AvailabilityResult:
    slots: List[Interval]
    busy: List[Interval] = field(default_factory=list)
    degraded: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "slots": [[s.start.isoformat(), s.end.isoformat()] for s in self.slots],
            "busy": [b.to_payload() for b in self.busy],
            "degraded": self.degraded,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["AvailabilityResult"]:
        try:
            slots = [_interval_from_iso(start, end) for start, end in payload["slots"]]
            busy = [
                Interval(
                    start=_required_timestamp(item["start"]),
                    end=_required_timestamp(item["end"]),
                    kind=item.get("lesson_type"),
                    duration_minutes=item.get("lesson_minutes"),
                    source=item.get("source"),
                )
                for item in payload["busy"]
            ]
        except (KeyError, TypeError, ValueError, InvalidDataError):
            logger.warning("Ignoring malformed cached availability payload")
            return None
        return cls(slots=slots, busy=busy, degraded=bool(payload.get("degraded")))


def _required_timestamp(raw: Any) -> datetime:
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise InvalidDataError(
            "Invalid timestamp in availability payload", details={"value": str(raw)}
        )
    return parsed


def _interval_from_iso(start: Any, end: Any) -> Interval:
    return Interval(start=_required_timestamp(start), end=_required_timestamp(end))


# ── Window strategies ───────────────────────────────────────────────────


def fixed_hours_windows(
    start_date: date,
    end_date: date,
    timezone_name: str,
    work_start: time,
    work_end: time,
    work_weekdays: Iterable[int],
) -> List[Interval]:
    """One window per working weekday spanning the configured local hours."""
    tz = get_timezone(timezone_name)
    weekdays = set(work_weekdays)
    windows: List[Interval] = []
    for day in iter_days(start_date, end_date):
        if day.weekday() not in weekdays:
            continue
        window = Interval(start=localize(day, work_start, tz), end=localize(day, work_end, tz))
        if window.is_valid:
            windows.append(window)
    return windows


def declared_free_windows(events: Iterable[CalendarEvent]) -> List[Interval]:
    """
    Windows from timed events marked free, merged so touching blocks widen.

    All-day and opaque events are ignored here.
    """
    candidates = []
    for event in events:
        if not event.is_free:
            continue
        timing = event.timing()
        if timing is None:
            continue
        candidates.append(Interval(start=timing[0], end=timing[1]))
    return merge_free_windows(candidates)


# ── Busy sources ────────────────────────────────────────────────────────


def calendar_busy_intervals(
    events: Iterable[CalendarEvent],
    timezone_name: str,
    in_person_buffer: timedelta = timedelta(0),
) -> List[Interval]:
    """
    Per-event busy intervals from a calendar listing.

    Free events do not block. All-day events block the whole local day span.
    Identical ``(start, end)`` pairs are kept once. Events tagged as in-person
    lessons are widened by ``in_person_buffer``.
    """
    tz = get_timezone(timezone_name)
    seen: Set[Tuple[datetime, datetime]] = set()
    busy: List[Interval] = []
    for event in events:
        if event.is_free or event.status == "cancelled":
            continue
        if event.is_timed:
            if event.start is None or event.end is None:
                continue
            start, end = event.start, event.end
        elif event.is_all_day and event.start_date is not None:
            end_date = event.end_date or event.start_date + timedelta(days=1)
            start, end = localize(event.start_date, time.min, tz), localize(end_date, time.min, tz)
        else:
            continue
        if end <= start:
            logger.warning("Skipping calendar event %s with inverted timing", event.id)
            continue
        if (start, end) in seen:
            continue
        seen.add((start, end))
        kind = event.private_properties.get("lesson_type")
        interval = Interval(
            start=start,
            end=end,
            kind=kind if kind in ("online", "in_person") else None,  # type: ignore[arg-type]
            duration_minutes=event.private_int("lesson_minutes"),
            source=event.private_properties.get("source") or GOOGLE_SOURCE,
        )
        busy.append(interval.expanded(in_person_buffer) if interval.kind == "in_person" else interval)
    return sorted(busy, key=lambda i: (i.start, i.end))


def booking_busy_intervals(
    bookings: Iterable[Booking], in_person_buffer: timedelta
) -> List[Interval]:
    """Busy spans for local bookings; in-person lessons carry the travel buffer."""
    busy: List[Interval] = []
    for booking in bookings:
        interval = Interval(
            start=booking.start_time,
            end=booking.end_time,
            kind="online" if booking.is_online else "in_person",
            duration_minutes=int((booking.end_time - booking.start_time).total_seconds() // 60),
            source=DB_SOURCE,
        )
        if not interval.is_valid:
            logger.warning("Skipping booking %s with inverted timing", booking.id)
            continue
        busy.append(interval if booking.is_online else interval.expanded(in_person_buffer))
    return busy


def combine_busy(
    calendar_busy: Sequence[Interval], local_busy: Sequence[Interval]
) -> List[Interval]:
    """
    Merge both busy sources into one busy set.

    Each source is merged on its own first. Calendar intervals that overlap a
    local interval are dropped so the local lesson metadata wins.
    """
    local = merge_busy(local_busy)
    remote = drop_overlapping(merge_busy(calendar_busy), local)
    return merge_busy([*local, *remote])


# ── Service ─────────────────────────────────────────────────────────────


class AvailabilityService(BaseService):
    """Computes bookable slots for one instructor at a time."""

    def __init__(
        self,
        db: Session,
        calendar_client: Optional[CalendarClient] = None,
        cache: Optional[AvailabilityCache] = None,
        booking_repository: Optional[BookingRepository] = None,
    ):
        super().__init__(db)
        self.calendar_client = calendar_client
        self.cache = cache
        self.booking_repository = booking_repository or BookingRepository(db)

    def _list_events(
        self, instructor: Instructor, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        assert self.calendar_client is not None
        try:
            return self.calendar_client.list_events(instructor.calendar_id, time_min, time_max)
        except CalendarApiError as exc:
            self.logger.error(
                "Calendar listing failed for instructor %s: %s", instructor.id, exc
            )
            raise UpstreamError(str(exc), upstream_status=exc.status_code) from exc

    @BaseService.measure_operation("get_slots")
    def get_slots(
        self,
        instructor: Instructor,
        start_date: date,
        end_date: date,
        config: SchedulingConfig,
        slot_minutes: Optional[int] = None,
        *,
        allow_degraded: bool = False,
    ) -> AvailabilityResult:
        """
        Compute bookable slots for an inclusive local date range.

        Args:
            instructor: Instructor whose calendar and ledger are consulted
            start_date: First local date (instructor timezone)
            end_date: Last local date, inclusive
            config: Scheduling configuration for this call
            slot_minutes: Slot length; defaults to the configured length
            allow_degraded: Fall back to fixed hours, flagged as degraded,
                when the calendar integration is not configured

        Raises:
            ValidationException: If the range is inverted or too long
            ConfigurationError: If the instructor has a calendar but the
                integration is not configured and degradation is not allowed
            UpstreamError: If the calendar cannot be read
        """
        if end_date < start_date:
            raise ValidationException("end_date must not be before start_date")
        if (end_date - start_date).days >= MAX_RANGE_DAYS:
            raise ValidationException(f"Date range is limited to {MAX_RANGE_DAYS} days")

        minutes = clamp_slot_minutes(slot_minutes or config.default_slot_minutes)
        timezone_name = instructor.timezone or config.default_timezone
        tz = get_timezone(timezone_name, default=config.default_timezone)
        time_min, time_max = local_range_to_utc(start_date, end_date, tz)

        calendar_ready = self.calendar_client is not None and config.calendar_configured
        mode = config.availability_mode
        degraded = False
        if instructor.has_calendar and not calendar_ready:
            if not allow_degraded:
                raise ConfigurationError(details={"instructor_id": instructor.id})
            self.logger.warning(
                "Calendar not configured; serving fixed-hours availability for %s",
                instructor.id,
            )
            mode = "fixed_hours"
            degraded = True

        cache_key = None
        if self.cache is not None and not degraded:
            cache_key = self.cache.build_key(
                instructor.calendar_id or f"instructor-{instructor.id}",
                start_date,
                end_date,
                minutes,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                result = AvailabilityResult.from_payload(cached)
                if result is not None:
                    return result

        events: List[CalendarEvent] = []
        if instructor.has_calendar and calendar_ready:
            events = self._list_events(instructor, time_min, time_max)

        if mode == "fixed_hours":
            windows = fixed_hours_windows(
                start_date,
                end_date,
                tz.zone,
                config.work_start,
                config.work_end,
                config.work_weekdays,
            )
        else:
            windows = declared_free_windows(events)

        bookings = self.booking_repository.list_scheduled_for_instructor(
            instructor.id, time_min - config.in_person_buffer, time_max + config.in_person_buffer
        )
        busy = combine_busy(
            calendar_busy_intervals(events, tz.zone, config.in_person_buffer),
            booking_busy_intervals(bookings, config.in_person_buffer),
        )
        free = subtract(windows, busy)
        result = AvailabilityResult(slots=build_slots(free, minutes), busy=busy, degraded=degraded)

        self.logger.debug(
            "Availability for %s: %d windows, %d busy, %d slots",
            instructor.id,
            len(windows),
            len(busy),
            len(result.slots),
        )
        if cache_key is not None and self.cache is not None:
            self.cache.set(cache_key, result.to_payload())
        return result
