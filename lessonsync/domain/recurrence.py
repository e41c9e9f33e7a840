"""Recurrence planning for repeating lesson bookings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class RepeatFrequency(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"


class RepeatDuration(str, Enum):
    ONE_MONTH = "1_month"
    THREE_MONTHS = "3_months"
    INDEFINITE = "indefinite"


# "indefinitely" is what older booking forms send.
_DURATION_ALIASES = {
    "indefinitely": RepeatDuration.INDEFINITE,
    "1month": RepeatDuration.ONE_MONTH,
    "3months": RepeatDuration.THREE_MONTHS,
}

_WEEKS_COVERED: Dict[RepeatDuration, Optional[int]] = {
    RepeatDuration.ONE_MONTH: 4,
    RepeatDuration.THREE_MONTHS: 12,
    RepeatDuration.INDEFINITE: None,
}

_INTERVAL_WEEKS: Dict[RepeatFrequency, int] = {
    RepeatFrequency.WEEKLY: 1,
    RepeatFrequency.BIWEEKLY: 2,
}


@dataclass(frozen=True)
class RecurrencePlan:
    """
    How a booking request expands into calendar writes.

    ``instance_count`` of None means unbounded: the series is written without
    a COUNT limit. ``interval_weeks`` is None for a single booking.
    """

    interval_weeks: Optional[int]
    instance_count: Optional[int]

    @property
    def is_recurring(self) -> bool:
        return self.interval_weeks is not None

    @property
    def is_unbounded(self) -> bool:
        return self.is_recurring and self.instance_count is None

    def to_rrule(self) -> List[str]:
        """Render the plan as an RFC 5545 recurrence list for the calendar API."""
        if not self.is_recurring:
            return []
        rule = f"RRULE:FREQ=WEEKLY;INTERVAL={self.interval_weeks}"
        if self.instance_count is not None:
            rule += f";COUNT={self.instance_count}"
        return [rule]


SINGLE_BOOKING = RecurrencePlan(interval_weeks=None, instance_count=1)


def _normalize_frequency(frequency: Optional[str]) -> Optional[RepeatFrequency]:
    cleaned = (frequency or "").strip().lower()
    if cleaned in ("", RepeatFrequency.NONE.value):
        return RepeatFrequency.NONE
    try:
        return RepeatFrequency(cleaned)
    except ValueError:
        return None


def _normalize_duration(duration: Optional[str]) -> Tuple[RepeatDuration, bool]:
    cleaned = (duration or "").strip().lower()
    if cleaned in _DURATION_ALIASES:
        return _DURATION_ALIASES[cleaned], True
    try:
        return RepeatDuration(cleaned), True
    except ValueError:
        return RepeatDuration.ONE_MONTH, False


def plan_recurrence(frequency: Optional[str], duration: Optional[str]) -> RecurrencePlan:
    """
    Map a frequency / duration selection onto a RecurrencePlan.

    Unrecognized durations (and unrecognized frequencies) fall back to the
    weekly, one-month plan. A frequency of "none" always yields one booking.
    """
    normalized_frequency = _normalize_frequency(frequency)
    if normalized_frequency is RepeatFrequency.NONE:
        return SINGLE_BOOKING

    normalized_duration, recognized = _normalize_duration(duration)
    if normalized_frequency is None or not recognized:
        normalized_frequency = RepeatFrequency.WEEKLY
        normalized_duration = RepeatDuration.ONE_MONTH

    interval = _INTERVAL_WEEKS[normalized_frequency]
    weeks = _WEEKS_COVERED[normalized_duration]
    count = None if weeks is None else weeks // interval
    return RecurrencePlan(interval_weeks=interval, instance_count=count)
