"""
Missing date range detection for incremental sync.

Ranges are inclusive on both ends. Backfill runs up to and including the
earliest stored date and recent data starts at the latest stored date, so
both boundary days are fetched again; gap-fill ranges only hold missing days.
The returned ranges never overlap each other, and together with the existing
dates they cover the sync window.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Literal

RangeReason = Literal[
    "full_sync",
    "initial_sync",
    "historical_backfill",
    "gap_fill",
    "recent_data",
    "date_window",
]

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date
    reason: RangeReason

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> dict:
        return {
            "type": self.reason,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def window_start(start_year: int) -> date:
    return date(start_year, 1, 1)


def find_missing_ranges(
    start_year: int,
    existing_dates: Iterable[date],
    *,
    force_full_sync: bool = False,
    today: date | None = None,
) -> list[DateRange]:
    today = today or date.today()
    start = window_start(start_year)
    if start > today:
        return []

    if force_full_sync:
        return [DateRange(start, today, "full_sync")]

    existing = {day for day in existing_dates if start <= day <= today}
    if not existing:
        return [DateRange(start, today, "initial_sync")]

    earliest = min(existing)
    latest = max(existing)
    ranges: list[DateRange] = []

    if start < earliest:
        ranges.append(DateRange(start, earliest, "historical_backfill"))

    gap_start: date | None = None
    current = earliest
    while current <= latest:
        if current in existing:
            if gap_start is not None:
                ranges.append(DateRange(gap_start, current - ONE_DAY, "gap_fill"))
                gap_start = None
        elif gap_start is None:
            gap_start = current
        current += ONE_DAY

    if latest < today:
        # A single stored day already closes the backfill range.
        recent_start = latest + ONE_DAY if ranges and ranges[-1].end >= latest else latest
        ranges.append(DateRange(recent_start, today, "recent_data"))

    return ranges


def requested_window(start: date, end: date, *, today: date | None = None) -> list[DateRange]:
    """Single caller-chosen range, with days after today clamped away."""

    end = min(end, today or date.today())
    if start > end:
        return []
    return [DateRange(start, end, "date_window")]
