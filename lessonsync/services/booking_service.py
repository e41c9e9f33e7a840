# lessonsync/services/booking_service.py
"""
Booking Service for the lesson scheduler.

Turns a booking request into ledger rows, calendar events and reminders:

- the recurrence plan decides how many calendar writes happen,
- every write is preceded by a conflict re-check under the per-instructor
  advisory lock,
- booking rows are committed before any calendar write or reminder is queued,
  so a failed insert leaves no orphaned events or tasks behind,
- a calendar write failure is logged but does not undo the booking,
- the availability cache is bumped after a successful write.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import hashlib
import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
import ulid

from ..core.booking_lock import instructor_booking_lock
from ..core.config import SchedulingConfig
from ..core.exceptions import (
    ConfigurationError,
    NotFoundException,
    SlotConflictError,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..domain.intervals import Interval, overlaps
from ..domain.recurrence import RecurrencePlan, plan_recurrence
from ..integrations.google_calendar_client import (
    CalendarApiError,
    CalendarClient,
    build_event_body,
)
from ..models.booking import Booking, BookingStatus
from ..models.instructor import Instructor
from ..repositories.booking_repository import BookingRepository
from ..repositories.instructor_repository import InstructorRepository
from ..schemas.booking import BookingRequest
from ..schemas.calendar_event import BOOKING_ID_KEY
from .availability_cache import AvailabilityCache
from .base import BaseService
from .conflict_checker import ConflictChecker
from .reminder_scheduler import ReminderScheduler

logger = logging.getLogger(__name__)

EVENT_SOURCE = "lessonsync"


def new_reminder_token() -> Tuple[str, str]:
    """Return a fresh ``(token, sha256_hex)`` pair."""
    token = secrets.token_urlsafe(32)
    return token, hashlib.sha256(token.encode("utf-8")).hexdigest()


def expand_occurrences(slot: Interval, plan: RecurrencePlan) -> List[Interval]:
    """
    Occurrences written for one selected slot.

    Bounded plans produce one occurrence per instance. Single bookings and
    open-ended series produce just the first occurrence; an open-ended series
    is carried by the calendar's recurrence rule instead.
    """
    if not plan.is_recurring or plan.is_unbounded or not plan.instance_count:
        return [slot]
    step = timedelta(weeks=plan.interval_weeks or 1)
    return [
        Interval(start=slot.start + step * index, end=slot.end + step * index)
        for index in range(plan.instance_count)
    ]


@dataclass(frozen=True)
class BookingResult:
    bookings: List[Booking]
    plan: RecurrencePlan
    series_id: Optional[str] = None
    calendar_failures: int = 0


class BookingService(BaseService):
    def __init__(
        self,
        db: Session,
        config: SchedulingConfig,
        calendar_client: Optional[CalendarClient] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        reminder_scheduler: Optional[ReminderScheduler] = None,
        availability_cache: Optional[AvailabilityCache] = None,
        booking_repository: Optional[BookingRepository] = None,
        instructor_repository: Optional[InstructorRepository] = None,
    ):
        super().__init__(db)
        self.config = config
        self.calendar_client = calendar_client
        self.booking_repository = booking_repository or BookingRepository(db)
        self.instructor_repository = instructor_repository or InstructorRepository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(
            db, calendar_client, self.booking_repository
        )
        self.reminder_scheduler = reminder_scheduler
        self.availability_cache = availability_cache

    # ── Calendar write ──────────────────────────────────────────────────

    def _event_fields(
        self, booking: Booking, instructor: Instructor, request: BookingRequest, plan: RecurrencePlan
    ) -> Dict[str, Any]:
        lesson_type = "online" if booking.is_online else "in_person"
        label = "Online lesson" if booking.is_online else "Lesson"
        if request.appointment_type != "lesson":
            label = request.appointment_type.replace("_", " ").title()
        description_lines = [
            f"Student: {booking.student_name} <{booking.student_email}>",
            f"Type: {lesson_type.replace('_', ' ')}",
        ]
        if booking.instrument:
            description_lines.append(f"Instrument: {booking.instrument}")
        if booking.notes:
            description_lines.append(f"Notes: {booking.notes}")
        return build_event_body(
            summary=f"{label}: {booking.student_name}",
            start=booking.start_time,
            end=booking.end_time,
            description="\n".join(description_lines),
            private_properties={
                BOOKING_ID_KEY: booking.id,
                "lesson_type": lesson_type,
                "lesson_minutes": booking.lesson_length,
                "appointment_type": booking.appointment_type,
                "reminder_token": booking.reminder_token,
                "source": EVENT_SOURCE,
                "repeat_frequency": request.repeat_frequency or "none",
                "repeat_duration": request.repeat_duration or "",
            },
            recurrence=plan.to_rrule() if plan.is_unbounded else (),
            timezone_name=instructor.timezone or self.config.default_timezone,
        )

    def _write_calendar_event(
        self, booking: Booking, instructor: Instructor, request: BookingRequest, plan: RecurrencePlan
    ) -> bool:
        if self.calendar_client is None or not instructor.has_calendar:
            return False
        try:
            event_id = self.calendar_client.insert_event(
                instructor.calendar_id, self._event_fields(booking, instructor, request, plan)
            )
        except CalendarApiError as exc:
            self.logger.error(
                "Calendar insert failed for booking %s: %s",
                booking.id,
                exc,
                extra={"status_code": exc.status_code},
            )
            return False
        booking.google_event_id = event_id
        return True

    # ── Public API ──────────────────────────────────────────────────────

    @BaseService.measure_operation("create_bookings")
    def create_bookings(
        self, request: BookingRequest, now: Optional[datetime] = None
    ) -> BookingResult:
        """
        Book the requested slot(s), expanding recurring requests.

        Raises:
            NotFoundException: Unknown instructor
            ConfigurationError: Instructor calendar present but integration missing
            SlotConflictError: Lock held by a concurrent booking, or a slot
                collides with busy time
            UpstreamError: Calendar unreadable during the conflict check
        """
        current = now or utc_now()
        instructor = self.instructor_repository.get_by_id(request.instructor_id)
        if instructor is None:
            raise NotFoundException("Instructor not found", details={"instructor_id": request.instructor_id})
        if instructor.has_calendar and (
            self.calendar_client is None or not self.config.calendar_configured
        ):
            raise ConfigurationError(details={"instructor_id": instructor.id})

        plan = plan_recurrence(request.repeat_frequency, request.repeat_duration)
        occurrences: List[Interval] = []
        for selection in sorted(request.slots, key=lambda s: s.start):
            occurrences.extend(
                expand_occurrences(Interval(start=selection.start, end=selection.end), plan)
            )
        ordered = sorted(occurrences, key=lambda o: o.start)
        for earlier, later in zip(ordered, ordered[1:]):
            if overlaps(earlier, later):
                raise ValidationException(
                    "Selected slots overlap each other",
                    details={"start": later.start.isoformat()},
                )
        series_id = str(ulid.ULID()) if plan.is_recurring or len(occurrences) > 1 else None

        with instructor_booking_lock(instructor.id) as acquired:
            if not acquired:
                raise SlotConflictError(
                    "Another booking for this instructor is in progress. Please try again."
                )

            for occurrence in occurrences:
                verdict = self.conflict_checker.check(
                    instructor, occurrence, request.is_online, self.config
                )
                if not verdict.ok and verdict.conflicting is not None:
                    raise SlotConflictError(
                        conflict_start=verdict.conflicting.start,
                        conflict_end=verdict.conflicting.end,
                        details={"requested_start": occurrence.start.isoformat()},
                    )

            bookings: List[Booking] = []
            with self.transaction():
                for occurrence in occurrences:
                    token, token_hash = new_reminder_token()
                    bookings.append(
                        self.booking_repository.create(
                            instructor_id=instructor.id,
                            series_id=series_id,
                            student_name=request.student_name,
                            student_email=str(request.student_email),
                            instrument=request.instrument,
                            notes=request.notes,
                            start_time=occurrence.start,
                            end_time=occurrence.end,
                            status=BookingStatus.SCHEDULED.value,
                            is_online=request.is_online,
                            lesson_length=int(occurrence.length.total_seconds() // 60),
                            appointment_type=request.appointment_type,
                            reminder_token=token,
                            reminder_token_hash=token_hash,
                        )
                    )

            # Side effects start only once every row is committed.
            calendar_failures = 0
            with self.transaction():
                for booking in bookings:
                    if instructor.has_calendar and not self._write_calendar_event(
                        booking, instructor, request, plan
                    ):
                        calendar_failures += 1
                    if self.reminder_scheduler is not None:
                        self.reminder_scheduler.schedule_for_lesson(
                            booking, self.config.reminder_lead, current
                        )
                self.booking_repository.flush()

        if self.availability_cache is not None:
            self.availability_cache.bump_cache_bust()

        self.logger.info(
            "Created %d booking(s) for instructor %s",
            len(bookings),
            instructor.id,
            extra={"series_id": series_id, "calendar_failures": calendar_failures},
        )
        return BookingResult(
            bookings=bookings,
            plan=plan,
            series_id=series_id,
            calendar_failures=calendar_failures,
        )
