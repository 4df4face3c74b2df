"""External calendar contract consumed by the booking engine."""

from __future__ import annotations

from datetime import datetime
from typing import List, Protocol, runtime_checkable

from ..domain.intervals import TimeInterval
from ..schemas.booking import BookingSnapshot, CalendarEventResult


@runtime_checkable
class CalendarGateway(Protocol):
    """
    Busy-time lookup and meeting event management on the teacher's calendar.

    Every method raises ExternalServiceException on failure.
    """

    def list_busy(self, teacher_ref: str, start: datetime, end: datetime) -> List[TimeInterval]:
        ...

    def create_event(self, snapshot: BookingSnapshot) -> CalendarEventResult:
        ...

    def update_event(self, event_ref: str, snapshot: BookingSnapshot) -> CalendarEventResult:
        ...

    def cancel_event(self, event_ref: str) -> None:
        ...
