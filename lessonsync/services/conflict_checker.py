# lessonsync/services/conflict_checker.py
"""
Conflict Checker Service for the lesson scheduler.

Validates a proposed slot against the instructor's busy time at write time.
In-person lessons need travel padding on both sides; online lessons do not.
The check itself is not atomic against the external calendar, so booking
writes wrap it in the per-instructor advisory lock.
"""

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.config import SchedulingConfig
from ..core.exceptions import ConfigurationError, UpstreamError
from ..domain.intervals import Interval, merge_busy, overlaps
from ..integrations.google_calendar_client import CalendarApiError, CalendarClient
from ..models.instructor import Instructor
from ..repositories.booking_repository import BookingRepository
from .availability_service import calendar_busy_intervals
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictVerdict:
    """Outcome of a conflict check; ``conflicting`` is set only when not ok."""

    ok: bool
    conflicting: Optional[Interval] = None

    @classmethod
    def clear(cls) -> "ConflictVerdict":
        return cls(ok=True)

    @classmethod
    def conflict(cls, interval: Interval) -> "ConflictVerdict":
        return cls(ok=False, conflicting=interval)


def buffer_for(is_online: bool, in_person_buffer: timedelta) -> timedelta:
    return timedelta(0) if is_online else in_person_buffer


def check_conflict(
    proposed: Interval,
    busy: Iterable[Interval],
    is_online: bool,
    in_person_buffer: timedelta = timedelta(minutes=30),
) -> ConflictVerdict:
    """
    Test a proposed slot against busy time.

    The slot is widened by the buffer, busy sources are merged, and the first
    merged busy interval that overlaps the widened slot is reported.
    """
    pad = buffer_for(is_online, in_person_buffer)
    check_window = proposed.expanded(pad)
    for interval in merge_busy(busy):
        if overlaps(check_window, interval):
            return ConflictVerdict.conflict(interval)
    return ConflictVerdict.clear()


class ConflictChecker(BaseService):
    """Collects an instructor's busy time and runs ``check_conflict`` against it."""

    def __init__(
        self,
        db: Session,
        calendar_client: Optional[CalendarClient] = None,
        booking_repository: Optional[BookingRepository] = None,
    ):
        super().__init__(db)
        self.calendar_client = calendar_client
        self.booking_repository = booking_repository or BookingRepository(db)

    def _busy_for(
        self, instructor: Instructor, window: Interval, config: SchedulingConfig
    ) -> List[Interval]:
        busy: List[Interval] = [
            Interval(
                start=booking.start_time,
                end=booking.end_time,
                kind="online" if booking.is_online else "in_person",
                duration_minutes=booking.lesson_length,
                source="db",
            )
            for booking in self.booking_repository.list_scheduled_for_instructor(
                instructor.id, window.start, window.end
            )
        ]
        if not instructor.has_calendar:
            return busy
        if self.calendar_client is None or not config.calendar_configured:
            raise ConfigurationError(details={"instructor_id": instructor.id})
        try:
            events = self.calendar_client.list_events(
                instructor.calendar_id, window.start, window.end
            )
        except CalendarApiError as exc:
            self.logger.error(
                "Calendar busy lookup failed for instructor %s: %s", instructor.id, exc
            )
            raise UpstreamError(str(exc), upstream_status=exc.status_code) from exc
        busy.extend(
            calendar_busy_intervals(events, instructor.timezone or config.default_timezone)
        )
        return busy

    @BaseService.measure_operation("check_conflict")
    def check(
        self,
        instructor: Instructor,
        proposed: Interval,
        is_online: bool,
        config: SchedulingConfig,
    ) -> ConflictVerdict:
        """
        Check one proposed slot for an instructor.

        Busy time is read in the buffer-widened window. Raises UpstreamError
        rather than reporting a clear verdict when the calendar cannot be read.
        """
        pad = buffer_for(is_online, config.in_person_buffer)
        window = proposed.expanded(pad)
        verdict = check_conflict(
            proposed,
            self._busy_for(instructor, window, config),
            is_online,
            config.in_person_buffer,
        )
        if not verdict.ok:
            self.logger.info(
                "Slot conflict for instructor %s at %s",
                instructor.id,
                proposed.start.isoformat(),
                extra={
                    "conflict_start": verdict.conflicting.start.isoformat()
                    if verdict.conflicting
                    else None
                },
            )
        return verdict
