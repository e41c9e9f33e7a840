"""Google Calendar integration client.

Reads and writes instructor calendars through the Calendar v3 REST API using
a service-account JWT exchanged for a short-lived access token. Raw event
payloads are converted to ``CalendarEvent`` before leaving this module.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence, cast
from urllib.parse import quote, unquote
from uuid import uuid4

import httpx
import jwt

from ..core.config import GOOGLE_CALENDAR_SCOPE, GOOGLE_TOKEN_URL, Settings
from ..core.exceptions import ConfigurationError
from ..core.timezone_utils import ensure_utc
from ..schemas.calendar_event import CalendarEvent, parse_event, parse_events

logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
MAX_RESULTS = 2500


class CalendarApiError(RuntimeError):
    """Raised when the calendar API is unreachable or responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class CalendarClient(Protocol):
    """Boundary contract for the external calendar collaborator."""

    def get_event(self, calendar_id: str, event_id: str) -> Optional[CalendarEvent]:
        """Return the event, or None when it does not exist."""
        ...

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        """List events in the window with recurring series expanded into instances."""
        ...

    def list_instances(
        self, calendar_id: str, master_event_id: str, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        ...

    def insert_event(self, calendar_id: str, fields: Dict[str, Any]) -> str:
        """Create an event and return its id."""
        ...


def to_rfc3339(dt: datetime) -> str:
    """Format as a strict RFC 3339 UTC string ending in ``Z``."""
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def _normalize_calendar_id(calendar_id: str) -> str:
    # Calendar ids are sometimes stored already percent-encoded (``%40``).
    return unquote((calendar_id or "").strip())


def build_event_body(
    *,
    summary: str,
    start: datetime,
    end: datetime,
    description: str = "",
    location: str = "",
    private_properties: Optional[Dict[str, Any]] = None,
    recurrence: Sequence[str] = (),
    timezone_name: str = "UTC",
) -> Dict[str, Any]:
    """Build an events.insert body for a lesson that shows as busy."""
    body: Dict[str, Any] = {
        "summary": summary,
        "description": description,
        "start": {"dateTime": to_rfc3339(start), "timeZone": timezone_name},
        "end": {"dateTime": to_rfc3339(end), "timeZone": timezone_name},
        "transparency": "opaque",
        "reminders": {"useDefault": False, "overrides": []},
    }
    if location.strip():
        body["location"] = location.strip()
    if recurrence:
        body["recurrence"] = list(recurrence)
    private = {
        str(key): str(value)
        for key, value in (private_properties or {}).items()
        if value is not None and value != ""
    }
    if private:
        body["extendedProperties"] = {"private": private}
    return body


class GoogleCalendarClient:
    """HTTP client for the Google Calendar v3 API."""

    def __init__(
        self,
        *,
        client_email: str,
        private_key: str,
        token_uri: str = GOOGLE_TOKEN_URL,
        subject: str | None = None,
        base_url: str = CALENDAR_API_BASE,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not client_email or not private_key:
            raise ValueError("Service account client_email and private_key must be provided")
        self._client_email = client_email
        self._private_key = private_key
        self._token_uri = token_uri
        self._subject = subject
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._access_token: str | None = None
        self._access_token_refresh_at: float = 0.0
        self._token_lock = threading.Lock()

    @classmethod
    def from_service_account(
        cls, service_account: Dict[str, str], **kwargs: Any
    ) -> "GoogleCalendarClient":
        return cls(
            client_email=service_account["client_email"],
            private_key=service_account["private_key"],
            token_uri=service_account.get("token_uri") or GOOGLE_TOKEN_URL,
            **kwargs,
        )

    # ── Auth ────────────────────────────────────────────────────────────

    def _build_assertion(self) -> str:
        now = int(time.time())
        claims: Dict[str, Any] = {
            "iss": self._client_email,
            "scope": GOOGLE_CALENDAR_SCOPE,
            "aud": self._token_uri,
            "iat": now,
            "exp": now + 3600,
        }
        if self._subject:
            claims["sub"] = self._subject
        token: str = jwt.encode(claims, self._private_key, algorithm="RS256")
        return token

    def _get_access_token(self) -> str:
        """Return a cached access token, refreshing before expiry."""
        with self._token_lock:
            now = time.monotonic()
            if self._access_token is not None and now < self._access_token_refresh_at:
                return self._access_token
            try:
                with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                    response = client.post(
                        self._token_uri,
                        data={
                            "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                            "assertion": self._build_assertion(),
                        },
                    )
            except httpx.TransportError as exc:
                logger.error("Google token endpoint unreachable: %s", exc)
                raise CalendarApiError(f"Google token endpoint unreachable: {exc}") from exc

            if response.status_code >= 400:
                logger.error(
                    "Google token exchange failed %s: %s",
                    response.status_code,
                    response.text[:500],
                )
                raise CalendarApiError(
                    "Google token exchange failed", status_code=response.status_code
                )
            payload = response.json()
            token = payload.get("access_token") if isinstance(payload, dict) else None
            if not token:
                raise CalendarApiError("Google token response missing access_token")
            expires_in = int(payload.get("expires_in") or 3600)
            self._access_token = str(token)
            # Rotate one minute before expiry.
            self._access_token_refresh_at = now + max(expires_in - 60, 0)
            return self._access_token

    # ── Transport ───────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self._get_access_token()}",
            "Accept": "application/json",
        }
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                return client.request(method, url, headers=headers, json=json_body, params=params)
        except httpx.TransportError as exc:
            logger.error("Google Calendar unreachable for %s %s: %s", method, path, exc)
            raise CalendarApiError(f"Google Calendar unreachable: {exc}") from exc

    def _json(self, response: httpx.Response, method: str, path: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            error_body: Any
            try:
                error_body = response.json()
            except json.JSONDecodeError:
                error_body = {"raw": response.text[:500]}
            logger.error(
                "Google Calendar error %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise CalendarApiError(
                f"Google Calendar responded with status {response.status_code}",
                status_code=response.status_code,
                details=error_body,
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise CalendarApiError("Received malformed JSON from Google Calendar") from exc
        if not isinstance(payload, dict):
            raise CalendarApiError("Unexpected Google Calendar response shape")
        return cast(Dict[str, Any], payload)

    def _events_path(self, calendar_id: str, *parts: str) -> str:
        path = f"calendars/{quote(_normalize_calendar_id(calendar_id), safe='')}/events"
        for part in parts:
            path += f"/{quote(part, safe='')}"
        return path

    # ── High-level API methods ──────────────────────────────────────────

    def get_event(self, calendar_id: str, event_id: str) -> Optional[CalendarEvent]:
        path = self._events_path(calendar_id, event_id)
        response = self._request("GET", path)
        if response.status_code in (404, 410):
            return None
        return parse_event(self._json(response, "GET", path))

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        path = self._events_path(calendar_id)
        params = {
            "timeMin": to_rfc3339(time_min),
            "timeMax": to_rfc3339(time_max),
            "singleEvents": "true",
            "showDeleted": "false",
            "orderBy": "startTime",
            "maxResults": MAX_RESULTS,
        }
        payload = self._json(self._request("GET", path, params=params), "GET", path)
        return parse_events(payload.get("items"))

    def list_instances(
        self, calendar_id: str, master_event_id: str, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        path = self._events_path(calendar_id, master_event_id, "instances")
        params = {
            "timeMin": to_rfc3339(time_min),
            "timeMax": to_rfc3339(time_max),
            "showDeleted": "false",
            "maxResults": MAX_RESULTS,
        }
        payload = self._json(self._request("GET", path, params=params), "GET", path)
        return parse_events(payload.get("items"))

    def insert_event(self, calendar_id: str, fields: Dict[str, Any]) -> str:
        path = self._events_path(calendar_id)
        response = self._request(
            "POST", path, json_body=fields, params={"sendUpdates": "all"}
        )
        payload = self._json(response, "POST", path)
        event_id = payload.get("id")
        if not event_id:
            raise CalendarApiError("Google Calendar insert returned no event id")
        return str(event_id)


class FakeCalendarClient:
    """In-memory calendar that mimics the Google API for tests and local runs."""

    # Unbounded recurring series are materialized this far ahead.
    UNBOUNDED_INSTANCE_LIMIT = 52

    def __init__(self) -> None:
        self._events: Dict[str, Dict[str, CalendarEvent]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def _calendar(self, calendar_id: str) -> Dict[str, CalendarEvent]:
        return self._events.setdefault(_normalize_calendar_id(calendar_id), {})

    def add_event(self, calendar_id: str, raw: Dict[str, Any]) -> CalendarEvent:
        """Store a raw Google-shaped event payload."""
        event = parse_event(raw)
        if event is None:
            raise ValueError("Event payload requires an id")
        self._calendar(calendar_id)[event.id] = event
        return event

    def move_event(
        self, calendar_id: str, event_id: str, start: datetime, end: datetime
    ) -> CalendarEvent:
        calendar = self._calendar(calendar_id)
        moved = calendar[event_id].model_copy(
            update={"start": ensure_utc(start), "end": ensure_utc(end)}
        )
        calendar[event_id] = moved
        return moved

    def get_event(self, calendar_id: str, event_id: str) -> Optional[CalendarEvent]:
        return self._calendar(calendar_id).get(event_id)

    @staticmethod
    def _in_window(event: CalendarEvent, time_min: datetime, time_max: datetime) -> bool:
        if event.start is None or event.end is None:
            return event.is_all_day
        return event.start < time_max and event.end > time_min

    def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        events = [
            event
            for event in self._calendar(calendar_id).values()
            if not event.is_recurring_master and self._in_window(event, time_min, time_max)
        ]
        return sorted(events, key=lambda e: (e.start or time_min, e.id))

    def list_instances(
        self, calendar_id: str, master_event_id: str, time_min: datetime, time_max: datetime
    ) -> List[CalendarEvent]:
        return [
            event
            for event in self.list_events(calendar_id, time_min, time_max)
            if event.recurring_event_id == master_event_id
        ]

    def insert_event(self, calendar_id: str, fields: Dict[str, Any]) -> str:
        master_id = f"fake-{uuid4().hex[:12]}"
        master = self.add_event(calendar_id, {**fields, "id": master_id})
        if master.is_recurring_master and master.start and master.end:
            self._expand_series(calendar_id, master)
        self._logger.debug("Fake calendar event created", extra={"event_id": master_id})
        return master_id

    def _expand_series(self, calendar_id: str, master: CalendarEvent) -> None:
        interval_weeks, count = 1, self.UNBOUNDED_INSTANCE_LIMIT
        for part in master.recurrence[0].removeprefix("RRULE:").split(";"):
            key, _, value = part.partition("=")
            if key == "INTERVAL":
                interval_weeks = int(value)
            elif key == "COUNT":
                count = int(value)
        if master.start is None or master.end is None:
            return
        for index in range(count):
            offset = timedelta(weeks=interval_weeks * index)
            start = master.start + offset
            instance = master.model_copy(
                update={
                    "id": f"{master.id}_{start.strftime('%Y%m%dT%H%M%SZ')}",
                    "start": start,
                    "end": master.end + offset,
                    "recurrence": [],
                    "recurring_event_id": master.id,
                }
            )
            self._calendar(calendar_id)[instance.id] = instance


def create_calendar_client(source: Settings) -> CalendarClient:
    """
    Build the calendar client for this process.

    Raises:
        ConfigurationError: when neither a service account nor the fake client
            is configured.
    """
    if source.google_calendar_fake:
        logger.warning("Using FakeCalendarClient; calendar writes stay in memory")
        return FakeCalendarClient()
    service_account = source.google_service_account()
    if service_account is None:
        raise ConfigurationError()
    return GoogleCalendarClient.from_service_account(
        service_account,
        subject=source.google_delegated_subject,
        timeout=source.google_calendar_timeout_seconds,
    )
