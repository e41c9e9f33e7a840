"""Join-window gate evaluation for online lessons."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

DEFAULT_MARGIN = timedelta(minutes=10)


class JoinWindowStatus(str, Enum):
    OPEN = "open"
    NOT_YET_OPEN = "not_yet_open"
    CLOSED = "closed"


@dataclass(frozen=True)
class JoinWindow:
    opens_at: datetime
    closes_at: datetime
    status: JoinWindowStatus

    @property
    def is_open(self) -> bool:
        return self.status is JoinWindowStatus.OPEN


def evaluate_join_window(
    start: datetime,
    end: datetime,
    now: datetime,
    margin: timedelta = DEFAULT_MARGIN,
) -> JoinWindow:
    """
    Decide whether a lesson can be joined at ``now``.

    The room is open from ``margin`` before the start until ``margin`` after
    the end, both bounds inclusive.
    """
    opens_at = start - margin
    closes_at = end + margin
    if now < opens_at:
        status = JoinWindowStatus.NOT_YET_OPEN
    elif now > closes_at:
        status = JoinWindowStatus.CLOSED
    else:
        status = JoinWindowStatus.OPEN
    return JoinWindow(opens_at=opens_at, closes_at=closes_at, status=status)
