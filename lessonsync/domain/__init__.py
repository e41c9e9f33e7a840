"""Pure scheduling logic: intervals, recurrence and the join window."""

from .intervals import Interval, merge_busy, merge_free_windows, overlaps, subtract
from .join_window import JoinWindow, JoinWindowStatus, evaluate_join_window
from .recurrence import RecurrencePlan, plan_recurrence

__all__ = [
    "Interval",
    "JoinWindow",
    "JoinWindowStatus",
    "RecurrencePlan",
    "evaluate_join_window",
    "merge_busy",
    "merge_free_windows",
    "overlaps",
    "plan_recurrence",
    "subtract",
]
