import json
from datetime import time, timedelta

import pytest

from lessonsync.core.config import (
    SchedulingConfig,
    Settings,
    parse_service_account_json,
    parse_weekdays,
)


class TestParseWeekdays:
    def test_names_and_numbers(self):
        assert parse_weekdays("mon, Wednesday,4") == frozenset({0, 2, 4})

    def test_blank_entries_ignored(self):
        assert parse_weekdays("sat,,sun,") == frozenset({5, 6})

    @pytest.mark.parametrize("raw", ["funday", "9"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_weekdays(raw)


class TestParseServiceAccount:
    def test_valid(self):
        raw = json.dumps({"client_email": "svc@proj.iam", "private_key": "KEY"})
        parsed = parse_service_account_json(raw)
        assert parsed["client_email"] == "svc@proj.iam"
        assert parsed["token_uri"] == "https://oauth2.googleapis.com/token"

    @pytest.mark.parametrize(
        "raw",
        ["", None, "not json", "[]", json.dumps({"client_email": "svc@proj.iam"})],
    )
    def test_incomplete(self, raw):
        assert parse_service_account_json(raw) is None


class TestSchedulingConfig:
    def test_from_settings(self):
        source = Settings(
            availability_mode="fixed_hours",
            work_start="08:30",
            work_end="12:00",
            work_weekdays="tue,thu",
            in_person_buffer_minutes=15,
            reminder_lead_minutes=30,
            google_calendar_fake=True,
        )
        config = SchedulingConfig.from_settings(source)
        assert config.availability_mode == "fixed_hours"
        assert config.work_start == time(8, 30)
        assert config.work_end == time(12)
        assert config.work_weekdays == frozenset({1, 3})
        assert config.in_person_buffer == timedelta(minutes=15)
        assert config.reminder_lead == timedelta(minutes=30)
        assert config.calendar_configured is True

    def test_unconfigured_calendar(self):
        source = Settings(google_calendar_fake=False, google_service_account_json="")
        assert SchedulingConfig.from_settings(source).calendar_configured is False

    def test_invalid_hours_rejected(self):
        with pytest.raises(ValueError):
            Settings(work_start="nine")
