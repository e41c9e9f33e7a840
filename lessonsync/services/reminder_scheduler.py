# lessonsync/services/reminder_scheduler.py
"""
Lesson reminder scheduling on top of Celery.

A reminder is a single ETA task per booking. Moving it means revoking the
queued task and enqueueing a new one; the booking row remembers the task id
and the time it is due.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Optional, Protocol

from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

SEND_REMINDER_TASK = "reminders.send_lesson_reminder"

# A reminder whose time has (nearly) passed goes out shortly instead.
GRACE_THRESHOLD = timedelta(seconds=30)
GRACE_DELAY = timedelta(seconds=60)


def desired_send_at(lesson_start: datetime, now: datetime, lead: timedelta) -> datetime:
    """Reminder time for a lesson, floored to a short delay from ``now``."""
    desired = ensure_utc(lesson_start) - lead
    if desired < now + GRACE_THRESHOLD:
        return now + GRACE_DELAY
    return desired


def needs_reschedule(
    current: Optional[datetime], desired: datetime, tolerance: timedelta
) -> bool:
    if current is None:
        return True
    return abs(ensure_utc(current) - desired) > tolerance


class ReminderNotifier(Protocol):
    """Delivers a reminder for a booking (email rendering lives elsewhere)."""

    def send_reminder(self, booking: Booking) -> None:
        ...


class LoggingReminderNotifier:
    """Notifier used when no delivery channel is wired in; records the send."""

    def send_reminder(self, booking: Booking) -> None:
        logger.info(
            "Lesson reminder for booking %s to %s at %s",
            booking.id,
            booking.student_email,
            booking.start_time.isoformat(),
        )


class ReminderScheduler:
    """Enqueues, moves and revokes reminder tasks for bookings."""

    def __init__(self, celery: Optional[Any] = None):
        if celery is None:
            from ..tasks.celery_app import celery_app

            celery = celery_app
        self.celery = celery
        self.logger = logging.getLogger(self.__class__.__name__)

    def schedule(self, booking: Booking, send_at: datetime) -> str:
        """Enqueue the reminder task and record it on the booking (not committed)."""
        result = self.celery.send_task(SEND_REMINDER_TASK, args=[booking.id], eta=send_at)
        booking.reminder_task_id = str(result.id)
        booking.reminder_scheduled_at = send_at
        prometheus_metrics.record_reminder("scheduled")
        self.logger.info(
            "Reminder for booking %s scheduled at %s",
            booking.id,
            send_at.isoformat(),
            extra={"task_id": booking.reminder_task_id},
        )
        return booking.reminder_task_id

    def cancel(self, booking: Booking) -> None:
        task_id = booking.reminder_task_id
        if task_id:
            self.celery.control.revoke(task_id)
            prometheus_metrics.record_reminder("cancelled")
            self.logger.info("Revoked reminder task %s for booking %s", task_id, booking.id)
        booking.reminder_task_id = None
        booking.reminder_scheduled_at = None

    def reschedule(self, booking: Booking, send_at: datetime) -> str:
        self.cancel(booking)
        task_id = self.schedule(booking, send_at)
        prometheus_metrics.record_reminder("rescheduled")
        return task_id

    def schedule_for_lesson(
        self, booking: Booking, lead: timedelta, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """
        Schedule the reminder for a freshly created booking.

        Returns the send time, or None when the lesson has already ended.
        """
        current = now or utc_now()
        if booking.end_time <= current:
            return None
        send_at = desired_send_at(booking.start_time, current, lead)
        self.schedule(booking, send_at)
        return send_at
