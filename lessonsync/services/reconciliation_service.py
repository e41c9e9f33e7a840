# lessonsync/services/reconciliation_service.py
"""
Calendar reconciliation for bookings.

The instructor's calendar is the source of truth for lesson timing; the
booking row is a cache of it. Reconciliation finds the calendar event behind
a booking and, when its timing differs, overwrites the booking and moves the
reminder.

Resolution order for one booking:

1. Fetch the stored event id directly. A non-recurring event is the answer.
2. If that event is a recurring master, or an instance that has already
   ended, look through the series instances for the one carrying this
   booking's id.
3. Otherwise scan the instructor's calendar for an event carrying the id.
4. Nothing found: the booking is left exactly as it was.

The periodic sweep uses a single calendar listing per instructor instead of
per-booking lookups.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from ..core.config import SchedulingConfig
from ..core.exceptions import UpstreamError
from ..core.timezone_utils import utc_now
from ..integrations.google_calendar_client import CalendarApiError, CalendarClient
from ..models.booking import Booking
from ..models.instructor import Instructor
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.instructor_repository import InstructorRepository
from ..schemas.calendar_event import CalendarEvent
from .base import BaseService
from .reminder_scheduler import ReminderScheduler, desired_send_at, needs_reschedule

logger = logging.getLogger(__name__)

ON_DEMAND_LOOKBACK = timedelta(hours=24)
ON_DEMAND_LOOKAHEAD = timedelta(days=14)
SWEEP_LOOKBACK = timedelta(hours=6)
SWEEP_LOOKAHEAD = timedelta(days=7)


class Resolution(str, Enum):
    DIRECT = "direct"
    VIA_INSTANCE = "via_instance"
    VIA_SCAN = "via_scan"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ReconciledTiming:
    """Timing the calendar reports for a booking, and what was done about it."""

    booking_id: str
    event_id: str
    start: datetime
    end: datetime
    resolution: Resolution
    changed: bool = False
    reminder_send_at: Optional[datetime] = None

    @property
    def reminder_rescheduled(self) -> bool:
        return self.reminder_send_at is not None


@dataclass(frozen=True)
class NotFound:
    booking_id: str
    reason: str = "no_matching_event"
    resolution: Resolution = field(default=Resolution.NOT_FOUND, init=False)


ReconcileOutcome = Union[ReconciledTiming, NotFound]


@dataclass
class SweepReport:
    instructors: int = 0
    bookings_updated: int = 0
    reminders_moved: int = 0
    failed_instructors: List[str] = field(default_factory=list)


def pick_occurrence(events: Sequence[CalendarEvent], now: datetime) -> Optional[CalendarEvent]:
    """
    Choose which of several matching events a booking refers to.

    An open-ended series produces one matching instance per week; the first
    one that has not ended yet wins, otherwise the latest.
    """
    timed = sorted(
        (e for e in events if e.timing() is not None), key=lambda e: e.timing()[0]  # type: ignore[index]
    )
    if not timed:
        return None
    for event in timed:
        if event.end is not None and event.end >= now:
            return event
    return timed[-1]


def _matching(events: Sequence[CalendarEvent], booking_id: str) -> List[CalendarEvent]:
    return [
        event
        for event in events
        if event.booking_id == booking_id and event.status != "cancelled"
    ]


def _has_ended(event: CalendarEvent, now: datetime) -> bool:
    return event.end is not None and event.end < now


class ReconciliationService(BaseService):
    """Pulls calendar truth back into the booking ledger."""

    def __init__(
        self,
        db: Session,
        calendar_client: CalendarClient,
        reminder_scheduler: Optional[ReminderScheduler] = None,
        booking_repository: Optional[BookingRepository] = None,
        instructor_repository: Optional[InstructorRepository] = None,
    ):
        super().__init__(db)
        self.calendar_client = calendar_client
        self.reminder_scheduler = reminder_scheduler
        self.booking_repository = booking_repository or BookingRepository(db)
        self.instructor_repository = instructor_repository or InstructorRepository(db)

    # ── Resolution ──────────────────────────────────────────────────────

    def resolve_event(
        self,
        booking: Booking,
        calendar_id: str,
        now: datetime,
        lookback: timedelta = ON_DEMAND_LOOKBACK,
        lookahead: timedelta = ON_DEMAND_LOOKAHEAD,
    ) -> Tuple[Optional[CalendarEvent], Resolution, Optional[str]]:
        """
        Locate the calendar event behind a booking.

        Returns ``(event, resolution, failure_reason)``. Direct and instance
        lookup errors fall through to the calendar scan; only a failing scan
        is reported as ``upstream_error``.
        """
        time_min, time_max = now - lookback, now + lookahead

        if booking.google_event_id:
            try:
                event = self.calendar_client.get_event(calendar_id, booking.google_event_id)
                if event is not None and event.status == "cancelled":
                    event = None
                master_id: Optional[str] = None
                if event is not None and event.is_recurring_master:
                    master_id = event.id
                elif event is not None and event.recurring_event_id and _has_ended(event, now):
                    # A past instance hands over to the next occurrence of its series.
                    master_id = event.recurring_event_id
                elif event is not None:
                    return event, Resolution.DIRECT, None
                if master_id is not None:
                    instances = self.calendar_client.list_instances(
                        calendar_id, master_id, time_min, time_max
                    )
                    match = pick_occurrence(_matching(instances, booking.id), now)
                    if match is not None:
                        return match, Resolution.VIA_INSTANCE, None
            except CalendarApiError as exc:
                self.logger.warning(
                    "Direct lookup of event %s failed for booking %s: %s",
                    booking.google_event_id,
                    booking.id,
                    exc,
                )

        try:
            events = self.calendar_client.list_events(calendar_id, time_min, time_max)
        except CalendarApiError as exc:
            self.logger.error("Calendar scan failed for booking %s: %s", booking.id, exc)
            return None, Resolution.NOT_FOUND, "upstream_error"
        match = pick_occurrence(_matching(events, booking.id), now)
        if match is not None:
            return match, Resolution.VIA_SCAN, None
        return None, Resolution.NOT_FOUND, "no_matching_event"

    # ── Applying calendar truth ─────────────────────────────────────────

    def _move_reminder(
        self, booking: Booking, new_start: datetime, now: datetime, config: SchedulingConfig
    ) -> Optional[datetime]:
        if not booking.has_reminder or booking.end_time <= now:
            return None
        send_at = desired_send_at(new_start, now, config.reminder_lead)
        if not needs_reschedule(booking.reminder_scheduled_at, send_at, config.reminder_tolerance):
            return None
        if self.reminder_scheduler is not None:
            self.reminder_scheduler.reschedule(booking, send_at)
        return send_at

    def apply_event(
        self,
        booking: Booking,
        event: CalendarEvent,
        resolution: Resolution,
        now: datetime,
        config: SchedulingConfig,
        context: str = "on_demand",
    ) -> ReconcileOutcome:
        """Overwrite the booking with the event's timing when it is usable."""
        timing = event.timing()
        if timing is None:
            self.logger.warning(
                "Event %s for booking %s has unusable timing; leaving booking unchanged",
                event.id,
                booking.id,
            )
            return NotFound(booking_id=booking.id, reason="invalid_event_timing")

        new_start, new_end = timing
        previous_end = booking.end_time
        changed = self.booking_repository.update_timing(booking, new_start, new_end, event.id)
        if booking.reminder_sent_at is not None and new_start >= previous_end:
            # Moved past the lesson the reminder was sent for: the new occurrence gets its own.
            booking.reminder_sent_at = None
            self.logger.info("Reminder re-armed for booking %s at its next occurrence", booking.id)
        if changed:
            prometheus_metrics.record_timing_overwrite(context)
            self.logger.info(
                "Booking %s now %s-%s from calendar (%s)",
                booking.id,
                new_start.isoformat(),
                new_end.isoformat(),
                resolution.value,
            )
        send_at = self._move_reminder(booking, new_start, now, config)
        return ReconciledTiming(
            booking_id=booking.id,
            event_id=event.id,
            start=new_start,
            end=new_end,
            resolution=resolution,
            changed=changed,
            reminder_send_at=send_at,
        )

    @BaseService.measure_operation("reconcile")
    def reconcile(
        self,
        booking: Booking,
        calendar_id: str,
        config: SchedulingConfig,
        now: Optional[datetime] = None,
    ) -> ReconcileOutcome:
        """
        Reconcile one booking against the calendar and commit any change.

        NotFound leaves the booking untouched.
        """
        current = now or utc_now()
        event, resolution, reason = self.resolve_event(booking, calendar_id, current)
        if event is None:
            prometheus_metrics.record_reconciliation(Resolution.NOT_FOUND.value, "on_demand")
            self.logger.info("No calendar event found for booking %s (%s)", booking.id, reason)
            return NotFound(booking_id=booking.id, reason=reason or "no_matching_event")

        with self.transaction():
            outcome = self.apply_event(booking, event, resolution, current, config)
        prometheus_metrics.record_reconciliation(outcome.resolution.value, "on_demand")
        return outcome

    # ── Periodic sweep ──────────────────────────────────────────────────

    def sweep_instructor(
        self,
        instructor: Instructor,
        config: SchedulingConfig,
        now: Optional[datetime] = None,
    ) -> List[ReconciledTiming]:
        """
        Reconcile every scheduled booking that appears on one instructor's calendar.

        Raises:
            UpstreamError: If the calendar cannot be listed
        """
        current = now or utc_now()
        try:
            events = self.calendar_client.list_events(
                instructor.calendar_id, current - SWEEP_LOOKBACK, current + SWEEP_LOOKAHEAD
            )
        except CalendarApiError as exc:
            raise UpstreamError(str(exc), upstream_status=exc.status_code) from exc

        by_booking: Dict[str, List[CalendarEvent]] = {}
        for event in events:
            if event.booking_id:
                by_booking.setdefault(event.booking_id, []).append(event)
        if not by_booking:
            return []

        results: List[ReconciledTiming] = []
        bookings = self.booking_repository.get_scheduled_by_ids(instructor.id, by_booking.keys())
        with self.transaction():
            for booking in bookings:
                event = pick_occurrence(by_booking[booking.id], current)
                if event is None:
                    continue
                outcome = self.apply_event(
                    booking, event, Resolution.VIA_SCAN, current, config, context="sweep"
                )
                prometheus_metrics.record_reconciliation(outcome.resolution.value, "sweep")
                if isinstance(outcome, ReconciledTiming):
                    results.append(outcome)
        return results

    @BaseService.measure_operation("sweep_all")
    def sweep_all(self, config: SchedulingConfig, now: Optional[datetime] = None) -> SweepReport:
        """Sweep every instructor with a calendar; one failure does not stop the rest."""
        current = now or utc_now()
        report = SweepReport()
        for instructor in self.instructor_repository.list_with_calendar():
            report.instructors += 1
            try:
                results = self.sweep_instructor(instructor, config, current)
            except UpstreamError as exc:
                report.failed_instructors.append(instructor.id)
                self.logger.error(
                    "Calendar sweep failed for instructor %s: %s", instructor.id, exc.message
                )
                continue
            report.bookings_updated += sum(1 for r in results if r.changed)
            report.reminders_moved += sum(1 for r in results if r.reminder_rescheduled)
        self.logger.info(
            "Calendar sweep finished: %d instructors, %d bookings updated, %d failed",
            report.instructors,
            report.bookings_updated,
            len(report.failed_instructors),
        )
        return report
