"""
Tests for BookingService.create_bookings.

The advisory lock is patched out; Redis is not part of the unit suite.
"""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from lessonsync.core.exceptions import (
    ConfigurationError,
    NotFoundException,
    RepositoryException,
    SlotConflictError,
    ValidationException,
)
from lessonsync.integrations.google_calendar_client import CalendarApiError
from lessonsync.models import Booking
from lessonsync.schemas.booking import BookingRequest
from lessonsync.services.booking_service import BookingService, expand_occurrences
from lessonsync.domain.intervals import Interval
from lessonsync.domain.recurrence import RecurrencePlan, SINGLE_BOOKING
from lessonsync.services.join_gate_service import hash_token
from lessonsync.services.reminder_scheduler import ReminderScheduler
from tests.factories import CALENDAR_ID, lesson_event, utc

START = utc(2030, 1, 7, 15, 0)
END = utc(2030, 1, 7, 15, 30)
NOW = utc(2030, 1, 1, 12, 0)


@pytest.fixture(autouse=True)
def lock_acquired():
    with patch("lessonsync.services.booking_service.instructor_booking_lock") as lock:
        lock.return_value.__enter__.return_value = True
        yield lock


@pytest.fixture
def celery():
    app = MagicMock()
    app.send_task.return_value.id = "task-1"
    return app


@pytest.fixture
def service(db, calendar, config, celery):
    return BookingService(
        db,
        config,
        calendar_client=calendar,
        reminder_scheduler=ReminderScheduler(celery),
        availability_cache=MagicMock(),
    )


def make_request(instructor, **overrides):
    fields = dict(
        instructor_id=instructor.id,
        student_name="Sam Student",
        student_email="sam@example.com",
        slots=[{"start": START, "end": END}],
        is_online=True,
    )
    fields.update(overrides)
    return BookingRequest(**fields)


def stored_bookings(db, instructor):
    return db.query(Booking).filter(Booking.instructor_id == instructor.id).all()


class TestExpandOccurrences:
    def test_bounded_plan_expands_weekly(self):
        slot = Interval(start=START, end=END)
        occurrences = expand_occurrences(slot, RecurrencePlan(2, 3))
        assert [o.start for o in occurrences] == [
            START,
            START + timedelta(weeks=2),
            START + timedelta(weeks=4),
        ]

    def test_single_and_unbounded_produce_one(self):
        slot = Interval(start=START, end=END)
        assert expand_occurrences(slot, SINGLE_BOOKING) == [slot]
        assert expand_occurrences(slot, RecurrencePlan(1, None)) == [slot]


class TestCreateBookings:
    def test_single_booking(self, db, service, calendar, instructor, celery):
        result = service.create_bookings(make_request(instructor), now=NOW)

        assert len(result.bookings) == 1
        booking = result.bookings[0]
        assert booking.start_time == START
        assert booking.lesson_length == 30
        assert booking.series_id is None
        assert booking.reminder_token_hash == hash_token(booking.reminder_token)

        event = calendar.get_event(CALENDAR_ID, booking.google_event_id)
        assert event.booking_id == booking.id
        assert event.private_properties["lesson_type"] == "online"
        assert event.transparency == "opaque"
        assert event.recurrence == []

        assert booking.reminder_scheduled_at == START - timedelta(hours=1)
        celery.send_task.assert_called_once()
        service.availability_cache.bump_cache_bust.assert_called_once()

    def test_bounded_recurrence_writes_each_instance(self, db, service, calendar, instructor):
        request = make_request(instructor, repeat_frequency="weekly", repeat_duration="1_month")

        result = service.create_bookings(request, now=NOW)

        assert len(result.bookings) == 4
        assert len({b.series_id for b in result.bookings}) == 1
        assert result.series_id is not None
        assert [b.start_time for b in result.bookings] == [
            START + timedelta(weeks=i) for i in range(4)
        ]
        events = calendar.list_events(CALENDAR_ID, START, START + timedelta(weeks=5))
        assert len(events) == 4
        assert {e.booking_id for e in events} == {b.id for b in result.bookings}

    def test_unbounded_recurrence_writes_series_master(self, db, service, calendar, instructor):
        request = make_request(instructor, repeat_frequency="biweekly", repeat_duration="indefinite")

        result = service.create_bookings(request, now=NOW)

        assert len(result.bookings) == 1
        booking = result.bookings[0]
        master = calendar.get_event(CALENDAR_ID, booking.google_event_id)
        assert master.recurrence == ["RRULE:FREQ=WEEKLY;INTERVAL=2"]
        instances = calendar.list_instances(
            CALENDAR_ID, master.id, START, START + timedelta(weeks=5)
        )
        assert [i.start for i in instances] == [
            START,
            START + timedelta(weeks=2),
            START + timedelta(weeks=4),
        ]
        assert all(i.booking_id == booking.id for i in instances)

    def test_conflict_rejects_whole_request(self, db, service, calendar, instructor):
        calendar.add_event(CALENDAR_ID, lesson_event("busy", START, END))

        with pytest.raises(SlotConflictError) as exc_info:
            service.create_bookings(make_request(instructor), now=NOW)

        assert exc_info.value.conflict_start == START
        assert stored_bookings(db, instructor) == []

    def test_conflict_in_later_instance_rejects_series(self, db, service, calendar, instructor):
        third = START + timedelta(weeks=2)
        calendar.add_event(CALENDAR_ID, lesson_event("busy", third, third + timedelta(minutes=30)))
        request = make_request(instructor, repeat_frequency="weekly", repeat_duration="1_month")

        with pytest.raises(SlotConflictError):
            service.create_bookings(request, now=NOW)
        assert stored_bookings(db, instructor) == []

    def test_lock_held_elsewhere(self, db, service, instructor, lock_acquired):
        lock_acquired.return_value.__enter__.return_value = False

        with pytest.raises(SlotConflictError):
            service.create_bookings(make_request(instructor), now=NOW)
        assert stored_bookings(db, instructor) == []

    def test_failed_insert_leaves_no_events_or_reminders(
        self, db, service, calendar, instructor, celery
    ):
        real_create = service.booking_repository.create
        created = []

        def create_then_fail(**fields):
            if len(created) == 2:
                raise RepositoryException("Failed to create Booking")
            created.append(fields)
            return real_create(**fields)

        request = make_request(instructor, repeat_frequency="weekly", repeat_duration="1_month")
        with patch.object(service.booking_repository, "create", side_effect=create_then_fail):
            with pytest.raises(RepositoryException):
                service.create_bookings(request, now=NOW)

        assert stored_bookings(db, instructor) == []
        assert calendar.list_events(CALENDAR_ID, START, START + timedelta(weeks=5)) == []
        celery.send_task.assert_not_called()

    def test_calendar_write_failure_keeps_booking(self, db, service, calendar, instructor):
        with patch.object(calendar, "insert_event", side_effect=CalendarApiError("nope", 500)):
            result = service.create_bookings(make_request(instructor), now=NOW)

        assert result.calendar_failures == 1
        assert result.bookings[0].google_event_id is None
        assert len(stored_bookings(db, instructor)) == 1

    def test_overlapping_selections_rejected(self, db, service, instructor):
        request = make_request(
            instructor,
            slots=[
                {"start": START, "end": END},
                {"start": START + timedelta(minutes=15), "end": END + timedelta(minutes=15)},
            ],
        )
        with pytest.raises(ValidationException):
            service.create_bookings(request, now=NOW)

    def test_multiple_selections_share_series(self, db, service, instructor):
        request = make_request(
            instructor,
            slots=[
                {"start": START, "end": END},
                {"start": START + timedelta(days=1), "end": END + timedelta(days=1)},
            ],
        )
        result = service.create_bookings(request, now=NOW)
        assert len(result.bookings) == 2
        assert result.bookings[0].series_id == result.bookings[1].series_id

    def test_unknown_instructor(self, db, service, instructor):
        with pytest.raises(NotFoundException):
            service.create_bookings(make_request(instructor, instructor_id="missing"), now=NOW)

    def test_unconfigured_calendar(self, db, calendar, config, instructor):
        service = BookingService(db, replace(config, calendar_configured=False), calendar_client=calendar)
        with pytest.raises(ConfigurationError):
            service.create_bookings(make_request(instructor), now=NOW)

    def test_lesson_in_the_past_gets_no_reminder(self, db, service, instructor, celery):
        service.create_bookings(make_request(instructor), now=END + timedelta(hours=1))
        celery.send_task.assert_not_called()
