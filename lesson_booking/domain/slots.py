"""
Offerable slot computation.

Pure and deterministic: the caller supplies availability windows and busy
intervals already expressed as UTC instants, plus the clock reading.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Sequence

from .intervals import Slot, TimeInterval, intersects_any, merge_intervals


def compute_slots(
    windows: Sequence[TimeInterval],
    busy: Iterable[TimeInterval],
    duration_minutes: int,
    now: datetime,
    buffer_minutes: int = 0,
    granularity_minutes: int = 30,
) -> List[Slot]:
    """
    Walk each window in fixed steps and keep the candidates that avoid all busy time.

    The walk starts at max(window start, now + buffer) and advances by
    ``granularity_minutes`` whether or not the candidate was accepted; it never
    jumps to the end of a conflicting block. Only the slot end depends on the
    duration, so durations that are not a multiple of the step are allowed.
    Windows are handled independently and overlapping windows may yield
    duplicate slots.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if granularity_minutes <= 0:
        raise ValueError("granularity_minutes must be positive")

    blocks = merge_intervals(busy)
    earliest = now + timedelta(minutes=buffer_minutes)
    length = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=granularity_minutes)

    slots: List[Slot] = []
    for window in sorted(windows, key=lambda w: (w.start, w.end)):
        cursor = max(window.start, earliest)
        if cursor >= window.end:
            continue
        while cursor + length <= window.end:
            candidate = Slot(cursor, cursor + length)
            if not intersects_any(candidate, blocks):
                slots.append(candidate)
            cursor += step
    return slots
