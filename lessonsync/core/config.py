# lessonsync/core/config.py
from dataclasses import dataclass, field
from datetime import time, timedelta
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, FrozenSet, Literal, Optional, TYPE_CHECKING, cast

if TYPE_CHECKING:
    load_dotenv: Callable[..., bool]
try:
    from dotenv import load_dotenv as _real_load_dotenv

    load_dotenv = cast(Callable[..., bool], _real_load_dotenv)
except Exception:  # pragma: no cover - optional on CI

    def load_dotenv(*_args: Any, **_kwargs: Any) -> bool:
        return False


from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


AvailabilityMode = Literal["fixed_hours", "free_events"]

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _parse_hhmm(value: str) -> time:
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes or 0))


def parse_weekdays(raw: str) -> FrozenSet[int]:
    """
    Parse a comma-separated weekday list into Python weekday ints.

    Accepts either names (``mon,tue``) or numbers where Monday is 0.
    """
    days = set()
    for token in raw.split(","):
        cleaned = token.strip().lower()
        if not cleaned:
            continue
        if cleaned.isdigit():
            day = int(cleaned)
        elif cleaned[:3] in WEEKDAY_NAMES:
            day = WEEKDAY_NAMES.index(cleaned[:3])
        else:
            raise ValueError(f"Unknown weekday: {token!r}")
        if not 0 <= day <= 6:
            raise ValueError(f"Weekday out of range: {day}")
        days.add(day)
    return frozenset(days)


def parse_service_account_json(raw: str | None) -> Optional[dict[str, str]]:
    """
    Parse a Google service-account JSON document.

    Returns None unless both ``client_email`` and ``private_key`` are present.
    """
    cleaned = (raw or "").strip()
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except ValueError:
        logger.warning("Google service account JSON is not valid JSON")
        return None
    if not isinstance(data, dict):
        return None
    if not data.get("client_email") or not data.get("private_key"):
        return None
    return {
        "client_email": str(data["client_email"]),
        "private_key": str(data["private_key"]),
        "token_uri": str(data.get("token_uri") or GOOGLE_TOKEN_URL),
    }


class Settings(BaseSettings):
    environment: str = Field(default="development", alias="ENVIRONMENT")
    database_url: str = Field(
        default="sqlite:///./lessonsync.db",
        description="SQLAlchemy URL for the booking ledger",
    )
    redis_url: str = "redis://localhost:6379"
    lock_namespace: str = Field(default="lessonsync", description="Prefix for Redis lock keys")

    # Google Calendar integration
    google_service_account_json: SecretStr = Field(
        default=SecretStr(""),
        description="Service account JSON used to read/write instructor calendars",
    )
    google_delegated_subject: Optional[str] = Field(
        default=None,
        description="Optional user to impersonate via domain-wide delegation",
    )
    google_calendar_timeout_seconds: float = Field(default=10.0, gt=0, le=60)
    google_calendar_fake: bool = Field(
        default=False,
        description="When true, use the in-memory FakeCalendarClient",
    )

    # Availability
    availability_mode: AvailabilityMode = "free_events"
    default_slot_minutes: int = 30
    work_start: str = "09:00"
    work_end: str = "17:00"
    work_weekdays: str = "mon,tue,wed,thu,fri"
    default_timezone: str = "America/Phoenix"
    availability_cache_ttl_seconds: int = 180
    in_person_buffer_minutes: int = 30

    # Booking / reconciliation
    booking_lock_ttl_seconds: int = 30
    calendar_sync_interval_minutes: int = 10
    reminder_lead_minutes: int = 60
    reminder_tolerance_seconds: int = 120
    join_gate_margin_minutes: int = 10

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("work_start", "work_end")
    @classmethod
    def _validate_hhmm(cls, value: str) -> str:
        _parse_hhmm(value)
        return value.strip()

    @field_validator("work_weekdays")
    @classmethod
    def _validate_weekdays(cls, value: str) -> str:
        parse_weekdays(value)
        return value

    @field_validator("default_slot_minutes")
    @classmethod
    def _validate_slot_minutes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("default_slot_minutes must be positive")
        return value

    def google_service_account(self) -> Optional[dict[str, str]]:
        return parse_service_account_json(self.google_service_account_json.get_secret_value())

    def google_is_configured(self) -> bool:
        return self.google_calendar_fake or self.google_service_account() is not None


@dataclass(frozen=True)
class SchedulingConfig:
    """
    Explicit scheduling configuration passed into the core at call time.

    Built once from ``Settings`` by the process bootstrap (or directly by tests);
    the availability, conflict and reconciliation services never read globals.
    """

    availability_mode: AvailabilityMode = "free_events"
    calendar_configured: bool = True
    default_slot_minutes: int = 30
    work_start: time = time(9, 0)
    work_end: time = time(17, 0)
    work_weekdays: FrozenSet[int] = field(default_factory=lambda: frozenset(range(5)))
    default_timezone: str = "America/Phoenix"
    in_person_buffer: timedelta = timedelta(minutes=30)
    reminder_lead: timedelta = timedelta(hours=1)
    reminder_tolerance: timedelta = timedelta(minutes=2)
    join_gate_margin: timedelta = timedelta(minutes=10)

    @classmethod
    def from_settings(cls, source: Settings) -> "SchedulingConfig":
        return cls(
            availability_mode=source.availability_mode,
            calendar_configured=source.google_is_configured(),
            default_slot_minutes=source.default_slot_minutes,
            work_start=_parse_hhmm(source.work_start),
            work_end=_parse_hhmm(source.work_end),
            work_weekdays=parse_weekdays(source.work_weekdays),
            default_timezone=source.default_timezone,
            in_person_buffer=timedelta(minutes=source.in_person_buffer_minutes),
            reminder_lead=timedelta(minutes=source.reminder_lead_minutes),
            reminder_tolerance=timedelta(seconds=source.reminder_tolerance_seconds),
            join_gate_margin=timedelta(minutes=source.join_gate_margin_minutes),
        )


settings = Settings()
