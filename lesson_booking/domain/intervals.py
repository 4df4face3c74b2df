"""
Half-open time interval arithmetic.

All intervals are [start, end) over aware UTC datetimes. Two intervals that
merely touch (a.end == b.start) do not overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List


@dataclass(frozen=True, slots=True)
class TimeInterval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Interval end {self.end} precedes start {self.start}")

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> "TimeInterval":
        return cls(start, start + timedelta(minutes=minutes))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeInterval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeInterval") -> bool:
        return self.start <= other.start and other.end <= self.end


# An offerable slot is an interval of the requested duration.
Slot = TimeInterval


def merge_intervals(intervals: Iterable[TimeInterval]) -> List[TimeInterval]:
    """Sort by start and fuse intervals that overlap or touch into maximal blocks."""
    merged: List[TimeInterval] = []
    for current in sorted(intervals, key=lambda interval: (interval.start, interval.end)):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = TimeInterval(last.start, current.end)
            continue
        merged.append(current)
    return merged


def intersects_any(candidate: TimeInterval, blocks: Iterable[TimeInterval]) -> bool:
    return any(candidate.overlaps(block) for block in blocks)


def subtract_interval(blocks: Iterable[TimeInterval], cut: TimeInterval) -> List[TimeInterval]:
    """Remove ``cut`` from every block, splitting blocks that straddle it."""
    remaining: List[TimeInterval] = []
    for block in blocks:
        if not block.overlaps(cut):
            remaining.append(block)
            continue
        if block.start < cut.start:
            remaining.append(TimeInterval(block.start, cut.start))
        if cut.end < block.end:
            remaining.append(TimeInterval(cut.end, block.end))
    return remaining
