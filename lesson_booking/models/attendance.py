# lesson_booking/models/attendance.py
"""
Attendance log (append-only) and derived per-student attendance stats.
"""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class AttendanceAction(str, Enum):
    MARKED_PRESENT = "marked_present"
    MARKED_ABSENT = "marked_absent"


class AttendanceLog(Base):
    __tablename__ = "attendance_logs"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String(32), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    source = Column(String(32), nullable=False, default="manual")

    __table_args__ = (
        CheckConstraint(
            "action IN ('marked_present', 'marked_absent')", name="ck_attendance_logs_action"
        ),
    )


class StudentStats(Base):
    __tablename__ = "student_stats"

    student_id = Column(String(26), ForeignKey("users.id"), primary_key=True)
    total_classes = Column(Integer, nullable=False, default=0)
    attended_classes = Column(Integer, nullable=False, default=0)
    attendance_rate = Column(Float, nullable=False, default=0.0)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return (
            f"<StudentStats {self.student_id}: {self.attended_classes}/{self.total_classes} "
            f"rate={self.attendance_rate:.2f}>"
        )
