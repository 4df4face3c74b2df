# lesson_booking/models/booking.py
"""
Booking model.

A booking reserves [scheduled_at, scheduled_at + duration) on a teacher's
calendar for one student. Rows are never deleted: cancellation is a status
change. ``ends_at`` is stored alongside the duration so range queries and the
PostgreSQL exclusion constraint can work on plain columns.

Lifecycle:
    SCHEDULED -> COMPLETED | NO_SHOW | CANCELLED   (terminal)
    SCHEDULED -> SCHEDULED                         (reschedule, same row)
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.timezone_utils import ensure_utc
from ..database import Base
from ..domain.intervals import TimeInterval

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))

    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    teacher_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    topic_id = Column(String(26), ForeignKey("topics.id"), nullable=False)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.SCHEDULED.value, index=True)

    # Package debited at creation; preferred target when the lesson is credited back
    package_id = Column(String(26), ForeignKey("packages.id", ondelete="SET NULL"), nullable=True)

    # External calendar linkage, filled in asynchronously
    external_event_ref = Column(String(255), nullable=True)
    external_meeting_link = Column(String(512), nullable=True)

    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    attended_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Optimistic concurrency: UPDATEs carry "WHERE version = :old"
    version = Column(Integer, nullable=False, default=1)

    student = relationship("User", foreign_keys=[student_id])
    teacher = relationship("User", foreign_keys=[teacher_id])
    topic = relationship("Topic")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('SCHEDULED', 'COMPLETED', 'NO_SHOW', 'CANCELLED')",
            name="ck_bookings_status",
        ),
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        CheckConstraint("scheduled_at < ends_at", name="check_time_order"),
        Index("ix_bookings_teacher_span", "teacher_id", "scheduled_at", "ends_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.SCHEDULED.value
        if self.scheduled_at is not None and self.duration_minutes and self.ends_at is None:
            self.ends_at = self.scheduled_at + timedelta(minutes=int(self.duration_minutes))

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: student={self.student_id}, teacher={self.teacher_id}, "
            f"at={self.scheduled_at}, {self.duration_minutes}min, status={self.status}>"
        )

    @property
    def start_utc(self) -> datetime:
        return ensure_utc(self.scheduled_at)

    @property
    def end_utc(self) -> datetime:
        return ensure_utc(self.ends_at)

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(self.start_utc, self.end_utc)

    @property
    def is_scheduled(self) -> bool:
        return self.status == BookingStatus.SCHEDULED.value

    def move_to(self, start: datetime, duration_minutes: int) -> None:
        """Move the reservation to a new interval (reschedule)."""
        self.scheduled_at = start
        self.duration_minutes = duration_minutes
        self.ends_at = start + timedelta(minutes=duration_minutes)

    def cancel(self, cancelled_by_id: Optional[str], reason: Optional[str], at: datetime) -> None:
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = at
        self.cancelled_by_id = cancelled_by_id
        self.cancellation_reason = reason
        logger.info(f"Booking {self.id} cancelled by user {cancelled_by_id}")

    def record_attendance(self, attended: bool, at: datetime) -> None:
        self.status = BookingStatus.COMPLETED.value if attended else BookingStatus.NO_SHOW.value
        if attended:
            self.attended_at = at
