# lesson_booking/schemas/booking.py
"""
Booking snapshots handed to the calendar and notification gateways.

A snapshot is a detached, serializable copy of what a collaborator needs to
know about a booking. Gateways never see ORM objects.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from pydantic import Field

from ..core.timezone_utils import ensure_utc
from .base import StrictModel

if TYPE_CHECKING:
    from ..models.booking import Booking


class Participant(StrictModel):
    user_id: str
    full_name: str
    email: str
    timezone: Optional[str] = None


class BookingSnapshot(StrictModel):
    """Point-in-time view of a booking."""

    booking_id: str
    status: str
    student: Participant
    teacher: Participant
    topic_id: str
    topic_name: str
    topic_level: str = ""
    start: datetime
    end: datetime
    duration_minutes: int = Field(gt=0)
    external_event_ref: Optional[str] = None
    external_meeting_link: Optional[str] = None
    version: int = Field(default=1, ge=1)

    @classmethod
    def from_booking(cls, booking: "Booking") -> "BookingSnapshot":
        student = booking.student
        teacher = booking.teacher
        topic = booking.topic
        return cls(
            booking_id=booking.id,
            status=booking.status,
            student=Participant(
                user_id=student.id,
                full_name=student.full_name,
                email=student.email,
                timezone=student.timezone,
            ),
            teacher=Participant(
                user_id=teacher.id,
                full_name=teacher.full_name,
                email=teacher.email,
                timezone=teacher.timezone,
            ),
            topic_id=topic.id,
            topic_name=topic.name,
            topic_level=topic.level or "",
            start=ensure_utc(booking.scheduled_at),
            end=ensure_utc(booking.ends_at),
            duration_minutes=booking.duration_minutes,
            external_event_ref=booking.external_event_ref,
            external_meeting_link=booking.external_meeting_link,
            version=booking.version or 1,
        )


class CalendarEventResult(StrictModel):
    """What the external calendar hands back after creating an event."""

    event_ref: str
    meeting_link: Optional[str] = None


class CreditBalance(StrictModel):
    """Aggregate lesson credit across a student's non-expired packages."""

    student_id: str
    total_lessons: int = 0
    used_lessons: int = 0
    remaining_lessons: int = 0
    active_packages: int = 0
