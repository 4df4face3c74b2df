# lesson_booking/models/availability.py
"""
Recurring weekly availability.

A window is a wall-clock range on one day of the week (0 = Sunday), in the
teacher's timezone. Several non-overlapping windows per day are allowed.
Teachers edit windows; the scheduling core only reads them.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class AvailabilityWindow(Base):
    __tablename__ = "availability_windows"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    teacher_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    teacher = relationship("User")

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
        Index("ix_availability_teacher_day", "teacher_id", "day_of_week"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityWindow {self.id}: teacher={self.teacher_id} "
            f"day={self.day_of_week} {self.start_time}-{self.end_time} active={self.is_active}>"
        )
