from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from lessonsync.models import Booking
from lessonsync.services.reminder_scheduler import (
    GRACE_DELAY,
    SEND_REMINDER_TASK,
    ReminderScheduler,
    desired_send_at,
    needs_reschedule,
)
from tests.factories import utc

NOW = utc(2030, 1, 7, 12, 0)
LEAD = timedelta(hours=1)


@pytest.fixture
def celery():
    app = MagicMock()
    app.send_task.return_value.id = "task-42"
    return app


@pytest.fixture
def booking():
    return Booking(
        id="01HZZZZZZZZZZZZZZZZZZZZZZZ",
        start_time=utc(2030, 1, 7, 15, 0),
        end_time=utc(2030, 1, 7, 15, 30),
    )


class TestDesiredSendAt:
    def test_lead_before_start(self):
        assert desired_send_at(utc(2030, 1, 7, 15), NOW, LEAD) == utc(2030, 1, 7, 14)

    def test_grace_floor_for_imminent_lesson(self):
        assert desired_send_at(NOW + timedelta(minutes=30), NOW, LEAD) == NOW + GRACE_DELAY

    def test_just_outside_grace_threshold(self):
        start = NOW + LEAD + timedelta(seconds=31)
        assert desired_send_at(start, NOW, LEAD) == NOW + timedelta(seconds=31)


class TestNeedsReschedule:
    def test_unscheduled(self):
        assert needs_reschedule(None, NOW, timedelta(minutes=2))

    def test_within_tolerance(self):
        assert not needs_reschedule(NOW, NOW + timedelta(minutes=2), timedelta(minutes=2))

    def test_beyond_tolerance(self):
        assert needs_reschedule(NOW, NOW + timedelta(minutes=3), timedelta(minutes=2))


class TestReminderScheduler:
    def test_schedule_records_task(self, celery, booking):
        send_at = utc(2030, 1, 7, 14)
        task_id = ReminderScheduler(celery).schedule(booking, send_at)

        assert task_id == "task-42"
        celery.send_task.assert_called_once_with(SEND_REMINDER_TASK, args=[booking.id], eta=send_at)
        assert booking.reminder_task_id == "task-42"
        assert booking.reminder_scheduled_at == send_at

    def test_reschedule_revokes_previous(self, celery, booking):
        booking.reminder_task_id = "old-task"
        ReminderScheduler(celery).reschedule(booking, utc(2030, 1, 8, 14))

        celery.control.revoke.assert_called_once_with("old-task")
        assert booking.reminder_task_id == "task-42"
        assert booking.reminder_scheduled_at == utc(2030, 1, 8, 14)

    def test_cancel_without_task(self, celery, booking):
        ReminderScheduler(celery).cancel(booking)
        celery.control.revoke.assert_not_called()
        assert booking.reminder_scheduled_at is None

    def test_schedule_for_lesson(self, celery, booking):
        send_at = ReminderScheduler(celery).schedule_for_lesson(booking, LEAD, NOW)
        assert send_at == utc(2030, 1, 7, 14)

    def test_schedule_for_finished_lesson(self, celery, booking):
        assert ReminderScheduler(celery).schedule_for_lesson(booking, LEAD, utc(2030, 1, 8)) is None
        celery.send_task.assert_not_called()
