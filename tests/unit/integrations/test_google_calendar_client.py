"""
Tests for the Google Calendar client against an httpx MockTransport.

A throwaway RSA key signs the service-account assertion so the token exchange
runs for real.
"""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import MockTransport, Response
import jwt
import pytest

from lessonsync.core.config import Settings
from lessonsync.core.exceptions import ConfigurationError
from lessonsync.integrations.google_calendar_client import (
    CalendarApiError,
    FakeCalendarClient,
    GoogleCalendarClient,
    build_event_body,
    create_calendar_client,
    to_rfc3339,
)
from tests.factories import CALENDAR_ID, lesson_event, utc

TOKEN_URI = "https://oauth2.example.test/token"
BASE = "https://calendar.example.test/calendar/v3"


@pytest.fixture(scope="module")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def make_client(private_key_pem, api_handler, captured=None, **kwargs):
    captured = captured if captured is not None else {}

    def handler(request):
        if str(request.url) == TOKEN_URI:
            captured.setdefault("token_requests", []).append(parse_qs(request.content.decode()))
            return Response(200, json={"access_token": "ya29.test", "expires_in": 3600})
        captured.setdefault("requests", []).append(request)
        return api_handler(request)

    return GoogleCalendarClient(
        client_email="svc@project.iam.gserviceaccount.com",
        private_key=private_key_pem,
        token_uri=TOKEN_URI,
        base_url=BASE,
        transport=MockTransport(handler),
        **kwargs,
    )


class TestAuth:
    def test_assertion_is_signed_and_token_reused(self, private_key_pem):
        captured: dict = {}
        client = make_client(
            private_key_pem,
            lambda request: Response(200, json={"items": []}),
            captured,
            subject="teacher@example.com",
        )

        client.list_events(CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8))
        client.list_events(CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8))

        assert len(captured["token_requests"]) == 1
        form = captured["token_requests"][0]
        assert form["grant_type"] == ["urn:ietf:params:oauth:grant-type:jwt-bearer"]
        claims = jwt.decode(form["assertion"][0], options={"verify_signature": False})
        assert claims["iss"] == "svc@project.iam.gserviceaccount.com"
        assert claims["aud"] == TOKEN_URI
        assert claims["sub"] == "teacher@example.com"
        assert captured["requests"][0].headers["Authorization"] == "Bearer ya29.test"

    def test_token_failure(self, private_key_pem):
        def handler(request):
            return Response(401, json={"error": "invalid_grant"})

        client = GoogleCalendarClient(
            client_email="svc@project.iam.gserviceaccount.com",
            private_key=private_key_pem,
            token_uri=TOKEN_URI,
            base_url=BASE,
            transport=MockTransport(handler),
        )
        with pytest.raises(CalendarApiError) as exc_info:
            client.get_event(CALENDAR_ID, "evt-1")
        assert exc_info.value.status_code == 401

    def test_missing_credentials(self):
        with pytest.raises(ValueError):
            GoogleCalendarClient(client_email="", private_key="")


class TestEvents:
    def test_list_events_request_shape(self, private_key_pem):
        captured: dict = {}
        items = [lesson_event("evt-1", utc(2030, 1, 7, 9), utc(2030, 1, 7, 10), "B1"), {"summary": "no id"}]
        client = make_client(
            private_key_pem, lambda request: Response(200, json={"items": items}), captured
        )

        events = client.list_events(CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8))

        request = captured["requests"][0]
        assert "/calendar/v3/calendars/teacher%40example.com/events?" in str(request.url)
        assert request.url.params["timeMin"] == "2030-01-07T00:00:00Z"
        assert request.url.params["singleEvents"] == "true"
        assert request.url.params["showDeleted"] == "false"
        assert [e.id for e in events] == ["evt-1"]
        assert events[0].booking_id == "B1"

    def test_get_event_missing_returns_none(self, private_key_pem):
        client = make_client(private_key_pem, lambda request: Response(404, json={}))
        assert client.get_event(CALENDAR_ID, "gone") is None

    def test_server_error_raises(self, private_key_pem):
        client = make_client(
            private_key_pem, lambda request: Response(500, json={"error": {"message": "backend"}})
        )
        with pytest.raises(CalendarApiError) as exc_info:
            client.list_events(CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8))
        assert exc_info.value.status_code == 500
        assert exc_info.value.details == {"error": {"message": "backend"}}

    def test_list_instances_path(self, private_key_pem):
        captured: dict = {}
        client = make_client(private_key_pem, lambda request: Response(200, json={"items": []}), captured)
        client.list_instances(CALENDAR_ID, "master_1", utc(2030, 1, 7), utc(2030, 1, 8))
        assert captured["requests"][0].url.path.endswith("/events/master_1/instances")

    def test_insert_event_sends_updates(self, private_key_pem):
        captured: dict = {}
        client = make_client(
            private_key_pem, lambda request: Response(200, json={"id": "new-evt"}), captured
        )
        body = build_event_body(summary="Lesson", start=utc(2030, 1, 7, 9), end=utc(2030, 1, 7, 10))

        assert client.insert_event(CALENDAR_ID, body) == "new-evt"
        request = captured["requests"][0]
        assert request.method == "POST"
        assert request.url.params["sendUpdates"] == "all"

    def test_insert_without_id_raises(self, private_key_pem):
        client = make_client(private_key_pem, lambda request: Response(200, json={}))
        with pytest.raises(CalendarApiError):
            client.insert_event(CALENDAR_ID, {})


class TestBuildEventBody:
    def test_busy_event_with_private_properties(self):
        body = build_event_body(
            summary="Lesson",
            start=utc(2030, 1, 7, 9),
            end=utc(2030, 1, 7, 10),
            private_properties={"booking_id": "B1", "notes": "", "lesson_minutes": 60},
            recurrence=["RRULE:FREQ=WEEKLY;INTERVAL=1"],
            timezone_name="America/Phoenix",
        )
        assert body["transparency"] == "opaque"
        assert body["start"] == {"dateTime": "2030-01-07T09:00:00Z", "timeZone": "America/Phoenix"}
        assert body["extendedProperties"] == {"private": {"booking_id": "B1", "lesson_minutes": "60"}}
        assert body["recurrence"] == ["RRULE:FREQ=WEEKLY;INTERVAL=1"]

    def test_rfc3339_normalizes_naive_as_utc(self):
        assert to_rfc3339(utc(2030, 1, 7, 9).replace(tzinfo=None)) == "2030-01-07T09:00:00Z"


class TestFakeCalendarClient:
    def test_bounded_series_expansion(self):
        calendar = FakeCalendarClient()
        body = build_event_body(
            summary="Lesson",
            start=utc(2030, 1, 7, 9),
            end=utc(2030, 1, 7, 10),
            recurrence=["RRULE:FREQ=WEEKLY;INTERVAL=2;COUNT=3"],
        )
        master_id = calendar.insert_event(CALENDAR_ID, body)

        instances = calendar.list_instances(
            CALENDAR_ID, master_id, utc(2030, 1, 1), utc(2030, 3, 1)
        )
        assert [i.start for i in instances] == [
            utc(2030, 1, 7, 9) + timedelta(weeks=2 * n) for n in range(3)
        ]
        assert calendar.get_event(CALENDAR_ID, master_id).is_recurring_master

    def test_encoded_and_plain_ids_are_the_same_calendar(self):
        calendar = FakeCalendarClient()
        calendar.add_event("teacher@example.com", lesson_event("a", utc(2030, 1, 7, 9), utc(2030, 1, 7, 10)))
        assert calendar.get_event(CALENDAR_ID, "a") is not None

    def test_move_event(self):
        calendar = FakeCalendarClient()
        calendar.add_event(CALENDAR_ID, lesson_event("a", utc(2030, 1, 7, 9), utc(2030, 1, 7, 10)))
        calendar.move_event(CALENDAR_ID, "a", utc(2030, 1, 8, 9), utc(2030, 1, 8, 10))
        assert calendar.get_event(CALENDAR_ID, "a").start == utc(2030, 1, 8, 9)


class TestCreateCalendarClient:
    def test_fake(self):
        assert isinstance(create_calendar_client(Settings(google_calendar_fake=True)), FakeCalendarClient)

    def test_unconfigured(self):
        with pytest.raises(ConfigurationError):
            create_calendar_client(Settings(google_calendar_fake=False, google_service_account_json=""))
