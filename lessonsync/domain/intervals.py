"""
Interval algebra for busy time and availability windows.

All intervals are half-open ``[start, end)`` on timezone-aware UTC datetimes.
Busy merging and free-window merging are deliberately separate functions:
busy intervals that merely touch stay distinct (back-to-back lessons), while
touching free windows widen into one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
import logging
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Set

logger = logging.getLogger(__name__)

LessonKind = Literal["online", "in_person"]


@dataclass(frozen=True)
class Interval:
    """A half-open span of time with optional lesson metadata."""

    start: datetime
    end: datetime
    kind: Optional[LessonKind] = None
    duration_minutes: Optional[int] = None
    source: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.end > self.start

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def expanded(self, before: timedelta, after: Optional[timedelta] = None) -> "Interval":
        return replace(
            self,
            start=self.start - before,
            end=self.end + (before if after is None else after),
        )

    def to_payload(self) -> dict[str, object]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "lesson_type": self.kind,
            "lesson_minutes": self.duration_minutes,
            "source": self.source,
        }


def overlaps(a: Interval, b: Interval) -> bool:
    """Half-open overlap test; touching intervals do not overlap."""
    return a.start < b.end and b.start < a.end


def _valid_only(intervals: Iterable[Interval]) -> List[Interval]:
    kept: List[Interval] = []
    for interval in intervals:
        if interval.is_valid:
            kept.append(interval)
        else:
            logger.warning(
                "Dropping malformed interval",
                extra={"start": str(interval.start), "end": str(interval.end)},
            )
    return kept


_TAG_FIELDS = ("kind", "duration_minutes", "source")


def _reconcile_tag(existing: object, incoming: object) -> object:
    if existing is None:
        return incoming
    if incoming is None or incoming == existing:
        return existing
    return None


def merge_busy(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Merge raw busy intervals into a sorted, non-overlapping busy set.

    Intervals merge only on strict overlap (``b.start < a.end``). Tags survive a
    merge when the parts agree or only one side carries a value; disagreement
    resets the tag to None for the rest of the merged span.
    """
    ordered = sorted(_valid_only(intervals), key=lambda i: (i.start, i.end))
    merged: List[Interval] = []
    conflicted: Set[str] = set()
    for current in ordered:
        if not merged or current.start >= merged[-1].end:
            merged.append(current)
            conflicted = set()
            continue
        last = merged[-1]
        tags: Dict[str, object] = {}
        for name in _TAG_FIELDS:
            existing, incoming = getattr(last, name), getattr(current, name)
            if existing is not None and incoming is not None and existing != incoming:
                conflicted.add(name)
            # A tag nulled by disagreement stays null across the whole span.
            tags[name] = None if name in conflicted else _reconcile_tag(existing, incoming)
        merged[-1] = Interval(start=last.start, end=max(last.end, current.end), **tags)  # type: ignore[arg-type]
    return merged


def merge_free_windows(windows: Iterable[Interval]) -> List[Interval]:
    """
    Merge declared-free windows; touching windows join into one.

    Windows carry no tags, so the output is always untagged.
    """
    ordered = sorted(_valid_only(windows), key=lambda w: (w.start, w.end))
    merged: List[Interval] = []
    for current in ordered:
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(start=last.start, end=max(last.end, current.end))
        else:
            merged.append(Interval(start=current.start, end=current.end))
    return merged


def subtract(windows: Sequence[Interval], busy: Sequence[Interval]) -> List[Interval]:
    """
    Remove busy time from availability windows.

    Each window is split against every overlapping busy interval, leaving zero,
    one or two pieces per split. Zero-length pieces are discarded.
    """
    ordered_busy = sorted(_valid_only(busy), key=lambda i: (i.start, i.end))
    remaining: List[Interval] = []
    for window in _valid_only(windows):
        segments = [Interval(start=window.start, end=window.end)]
        for blocker in ordered_busy:
            if blocker.start >= window.end:
                break
            next_segments: List[Interval] = []
            for segment in segments:
                if not overlaps(segment, blocker):
                    next_segments.append(segment)
                    continue
                if blocker.start > segment.start:
                    next_segments.append(Interval(start=segment.start, end=blocker.start))
                if blocker.end < segment.end:
                    next_segments.append(Interval(start=blocker.end, end=segment.end))
            segments = next_segments
            if not segments:
                break
        remaining.extend(segment for segment in segments if segment.is_valid)
    return remaining


def drop_overlapping(candidates: Sequence[Interval], reference: Sequence[Interval]) -> List[Interval]:
    """Return candidates that overlap nothing in ``reference``."""
    return [c for c in candidates if not any(overlaps(c, r) for r in reference)]
