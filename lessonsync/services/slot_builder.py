"""Slot generation from free windows."""

from datetime import timedelta
from typing import Iterable, List

from ..domain.intervals import Interval

MIN_SLOT_MINUTES = 10


def clamp_slot_minutes(slot_minutes: int) -> int:
    return max(MIN_SLOT_MINUTES, int(slot_minutes or 0))


def build_slots(free_windows: Iterable[Interval], slot_minutes: int) -> List[Interval]:
    """
    Walk each free window from its start and emit back-to-back slots.

    A slot is emitted only while it fits entirely inside the window, so there
    is never a partial trailing slot. Slot length is clamped to at least
    ``MIN_SLOT_MINUTES``.
    """
    step = timedelta(minutes=clamp_slot_minutes(slot_minutes))
    slots: List[Interval] = []
    for window in free_windows:
        if not window.is_valid:
            continue
        cursor = window.start
        while cursor + step <= window.end:
            slots.append(Interval(start=cursor, end=cursor + step))
            cursor += step
    return slots
