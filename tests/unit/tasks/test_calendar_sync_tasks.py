from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import patch

from lessonsync.core.timezone_utils import utc_now
from lessonsync.tasks import calendar_sync_tasks
from lessonsync.tasks.beat_schedule import SWEEP_TASK, get_beat_schedule
from lessonsync.tasks.calendar_sync_tasks import sweep_instructors
from tests.factories import CALENDAR_ID, lesson_event


class TestSweepInstructorsTask:
    def test_skipped_without_calendar_integration(self):
        with patch.object(calendar_sync_tasks, "calendar_client_or_none", return_value=None):
            assert sweep_instructors.run() == {"skipped": True}

    def test_sweep_summary(self, db, calendar, instructor, make_booking):
        start = utc_now() + timedelta(days=1)
        booking = make_booking(start, start + timedelta(minutes=30), google_event_id="evt-1")
        moved = start + timedelta(hours=2)
        calendar.add_event(
            CALENDAR_ID, lesson_event("evt-1", moved, moved + timedelta(minutes=30), booking.id)
        )

        @contextmanager
        def _scope():
            yield db

        with patch.object(calendar_sync_tasks, "session_scope", _scope), patch.object(
            calendar_sync_tasks, "calendar_client_or_none", return_value=calendar
        ), patch.object(calendar_sync_tasks, "ReminderScheduler"):
            summary = sweep_instructors.run()

        assert summary["skipped"] is False
        assert summary["instructors"] == 1
        assert summary["bookings_updated"] == 1
        assert summary["failed_instructors"] == []
        assert booking.start_time == moved


class TestBeatSchedule:
    def test_sweep_entry(self):
        schedule = get_beat_schedule(15)
        entry = schedule["sync-instructor-calendars"]
        assert entry["task"] == SWEEP_TASK
        assert entry["schedule"] == timedelta(minutes=15)
        assert entry["options"]["queue"] == "calendar_sync"

    def test_interval_floor(self):
        assert get_beat_schedule(0)["sync-instructor-calendars"]["schedule"] == timedelta(minutes=1)


def test_health_check_task():
    from lessonsync.tasks.celery_app import health_check

    assert health_check.run()["status"] == "healthy"
