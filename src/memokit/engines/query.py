"""Ordering, filtering and aggregation shared by all engines."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from memokit.errors import ValidationRejected
from memokit.models import STATS_FIELDS, Memo, MemoStats


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonotonicClock:
    """Wall clock that never returns the same or an earlier instant twice.

    Sequential writes on one engine therefore always get distinct, increasing
    timestamps even when the system clock is coarse or steps backwards.
    """

    def __init__(self, now: Callable[[], datetime] = _utcnow) -> None:
        self._now = now
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            current = self._now()
            if current.tzinfo is None:
                current = current.replace(tzinfo=timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current

    def advance_to(self, instant: datetime) -> None:
        """Never issue a time at or before ``instant`` (e.g. newest stored row)."""
        with self._lock:
            if self._last is None or instant > self._last:
                self._last = instant


def check_window(limit: int | None, offset: int | None) -> None:
    """Negative bounds are rejected rather than left to slicing or SQL rules."""
    if limit is not None and limit < 0:
        raise ValidationRejected(f"limit must be non-negative, got {limit}")
    if offset is not None and offset < 0:
        raise ValidationRejected(f"offset must be non-negative, got {offset}")


def paginate(items: list, limit: int | None = None, offset: int | None = None) -> list:
    """Skip ``offset`` items, then cap at ``limit``. None means unbounded."""
    check_window(limit, offset)
    if offset:
        items = items[offset:]
    if limit is not None:
        items = items[:limit]
    return items


def sort_recent_first(memos: Iterable[Memo]) -> list[Memo]:
    """Order by updatedAt descending.

    Input is expected in insertion order; ties keep the newest insertion first.
    """
    return sorted(reversed(list(memos)), key=lambda m: m.updated_at, reverse=True)


def is_blank(query: str | None) -> bool:
    return query is None or not query.strip()


def matches(memo: Memo, query: str) -> bool:
    needle = query.casefold()
    if needle in memo.title.casefold() or needle in memo.content.casefold():
        return True
    return any(needle in tag.casefold() for tag in memo.tags)


def filter_matching(memos: Iterable[Memo], query: str) -> list[Memo]:
    if is_blank(query):
        return list(memos)
    return [m for m in memos if matches(m, query)]


def compute_stats(memos: Iterable[Memo]) -> MemoStats:
    """Aggregate a single snapshot so every count is mutually consistent."""
    stats = MemoStats()
    for memo in memos:
        stats.total += 1
        attr = STATS_FIELDS.get(memo.category)
        if attr:
            setattr(stats, attr, getattr(stats, attr) + 1)
        if memo.priority == "high":
            stats.high_priority += 1
    return stats
