"""Pure scheduling arithmetic with no storage or I/O."""

from .intervals import Slot, TimeInterval, intersects_any, merge_intervals, subtract_interval
from .slots import compute_slots

__all__ = [
    "Slot",
    "TimeInterval",
    "compute_slots",
    "intersects_any",
    "merge_intervals",
    "subtract_interval",
]
