# lessonsync/tasks/calendar_sync_tasks.py
"""Periodic reconciliation of bookings against instructor calendars."""

from typing import Any, Dict

from celery.utils.log import get_task_logger

from ..core.config import SchedulingConfig, settings
from ..services.reconciliation_service import ReconciliationService
from ..services.reminder_scheduler import ReminderScheduler
from .helpers import calendar_client_or_none, session_scope
from .celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="calendar_sync.sweep_instructors", max_retries=0, queue="calendar_sync")
def sweep_instructors() -> Dict[str, Any]:
    """
    Pull calendar timing for every instructor with a calendar.

    Returns a summary of the sweep; skipped entirely when the calendar
    integration is not configured.
    """
    client = calendar_client_or_none()
    if client is None:
        logger.info("Calendar integration not configured; skipping sweep")
        return {"skipped": True}

    config = SchedulingConfig.from_settings(settings)
    with session_scope() as session:
        service = ReconciliationService(
            session, client, reminder_scheduler=ReminderScheduler(celery_app)
        )
        report = service.sweep_all(config)
    return {
        "skipped": False,
        "instructors": report.instructors,
        "bookings_updated": report.bookings_updated,
        "reminders_moved": report.reminders_moved,
        "failed_instructors": report.failed_instructors,
    }
