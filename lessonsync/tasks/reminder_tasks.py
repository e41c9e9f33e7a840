# lessonsync/tasks/reminder_tasks.py
"""Lesson reminder delivery."""

from datetime import datetime, timedelta
from typing import Optional

from celery.utils.log import get_task_logger

from ..core.config import SchedulingConfig, settings
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.booking import Booking
from ..repositories.booking_repository import BookingRepository
from ..services.reconciliation_service import ReconciledTiming, ReconciliationService
from ..services.reminder_scheduler import (
    LoggingReminderNotifier,
    ReminderNotifier,
    ReminderScheduler,
)
from .helpers import calendar_client_or_none, session_scope
from .celery_app import celery_app

logger = get_task_logger(__name__)

# A task firing this much earlier than the booking's stored reminder time is stale.
STALE_MARGIN = timedelta(seconds=90)


def get_notifier() -> ReminderNotifier:
    return LoggingReminderNotifier()


def _skip_reason(booking: Optional[Booking], now: datetime) -> Optional[str]:
    if booking is None:
        return "missing"
    if not booking.is_scheduled:
        return "cancelled"
    if booking.reminder_sent_at is not None:
        return "already_sent"
    if booking.reminder_scheduled_at is not None and ensure_utc(
        booking.reminder_scheduled_at
    ) > now + STALE_MARGIN:
        return "stale"
    return None


@celery_app.task(name="reminders.send_lesson_reminder", bind=True, max_retries=3, queue="reminders")
def send_lesson_reminder(self, booking_id: str) -> str:
    """
    Send the reminder for one booking.

    Timing is reconciled first; if the lesson moved far enough the reminder is
    re-queued for the new time instead of being sent now.
    """
    now = utc_now()
    config = SchedulingConfig.from_settings(settings)
    with session_scope() as session:
        repo = BookingRepository(session)
        booking = repo.get_by_id(booking_id)
        reason = _skip_reason(booking, now)
        if reason is not None or booking is None:
            logger.info("Skipping reminder for booking %s: %s", booking_id, reason)
            return reason or "missing"

        instructor = booking.instructor
        client = calendar_client_or_none()
        if client is not None and instructor is not None and instructor.has_calendar:
            service = ReconciliationService(
                session, client, reminder_scheduler=ReminderScheduler(celery_app)
            )
            outcome = service.reconcile(booking, instructor.calendar_id, config, now=now)
            if (
                isinstance(outcome, ReconciledTiming)
                and outcome.reminder_send_at is not None
                and outcome.reminder_send_at > now + STALE_MARGIN
            ):
                logger.info(
                    "Lesson %s moved; reminder re-queued for %s",
                    booking_id,
                    outcome.reminder_send_at.isoformat(),
                )
                return "rescheduled"

        get_notifier().send_reminder(booking)
        repo.update(booking.id, reminder_sent_at=now)
        logger.info("Reminder sent for booking %s", booking_id)
        return "sent"
