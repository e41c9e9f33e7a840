"""
End-to-end lesson flow against the in-memory calendar.

Book from computed availability, let the instructor drag the lesson in their
calendar, then confirm the sweep, the availability view and the join gate all
follow the calendar.
"""

from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest

from lessonsync.schemas.booking import BookingRequest
from lessonsync.services import (
    AvailabilityService,
    BookingService,
    JoinGateService,
    ReconciliationService,
    ReminderScheduler,
)
from tests.factories import CALENDAR_ID, lesson_event, utc

DAY = date(2030, 1, 7)
NOW = utc(2030, 1, 6, 12)


@pytest.fixture
def celery():
    app = MagicMock()
    app.send_task.return_value.id = "task-1"
    return app


def test_booking_follows_calendar_moves(db, calendar, config, instructor, celery):
    calendar.add_event(
        CALENDAR_ID,
        lesson_event("open", utc(2030, 1, 7, 9), utc(2030, 1, 7, 12), transparency="transparent"),
    )
    availability = AvailabilityService(db, calendar)
    slots = availability.get_slots(instructor, DAY, DAY, config, slot_minutes=60).slots
    assert len(slots) == 3

    scheduler = ReminderScheduler(celery)
    request = BookingRequest(
        instructor_id=instructor.id,
        student_name="Sam Student",
        student_email="sam@example.com",
        slots=[{"start": slots[1].start, "end": slots[1].end}],
        is_online=True,
    )
    with patch("lessonsync.services.booking_service.instructor_booking_lock") as lock:
        lock.return_value.__enter__.return_value = True
        booking = BookingService(
            db, config, calendar_client=calendar, reminder_scheduler=scheduler
        ).create_bookings(request, now=NOW).bookings[0]

    remaining = availability.get_slots(instructor, DAY, DAY, config, slot_minutes=60).slots
    assert [s.start for s in remaining] == [utc(2030, 1, 7, 9), utc(2030, 1, 7, 11)]

    moved_start = utc(2030, 1, 7, 11)
    calendar.move_event(CALENDAR_ID, booking.google_event_id, moved_start, moved_start + timedelta(hours=1))

    report = ReconciliationService(db, calendar, reminder_scheduler=scheduler).sweep_all(config, NOW)
    assert report.bookings_updated == 1
    assert report.reminders_moved == 1
    assert booking.start_time == moved_start
    assert booking.reminder_scheduled_at == moved_start - timedelta(hours=1)

    after_move = availability.get_slots(instructor, DAY, DAY, config, slot_minutes=60).slots
    assert [s.start for s in after_move] == [utc(2030, 1, 7, 9), utc(2030, 1, 7, 10)]

    gate = JoinGateService(db, ReconciliationService(db, calendar), config)
    decision = gate.open_gate(booking.reminder_token, now=moved_start - timedelta(minutes=5))
    assert decision.is_open
