# lessonsync/tasks/beat_schedule.py
"""
Celery Beat schedule for the lesson scheduler.

The calendar sweep is the only periodic job. Reminders are one-off ETA tasks
and are not listed here.
"""

from datetime import timedelta
from typing import Any, Dict

SWEEP_TASK = "calendar_sync.sweep_instructors"


def get_beat_schedule(sync_interval_minutes: int = 10) -> Dict[str, Dict[str, Any]]:
    interval = max(1, int(sync_interval_minutes))
    return {
        "sync-instructor-calendars": {
            "task": SWEEP_TASK,
            "schedule": timedelta(minutes=interval),
            "options": {
                "queue": "calendar_sync",
                # A sweep that waited longer than its interval is superseded by the next one.
                "expires": interval * 60,
            },
        },
    }
