# lesson_booking/repositories/attendance_repository.py
"""
Attendance Repository: append-only log plus the derived per-student stats row.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.attendance import AttendanceAction, AttendanceLog, StudentStats
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AttendanceRepository(BaseRepository[AttendanceLog]):
    def __init__(self, db: Session):
        super().__init__(db, AttendanceLog)

    def append_log(
        self,
        booking_id: str,
        student_id: str,
        action: AttendanceAction,
        timestamp: datetime,
        source: str = "manual",
    ) -> AttendanceLog:
        return self.create(
            booking_id=booking_id,
            student_id=student_id,
            action=action.value,
            timestamp=timestamp,
            source=source,
        )

    def list_for_booking(self, booking_id: str) -> List[AttendanceLog]:
        query = (
            self.db.query(AttendanceLog)
            .filter(AttendanceLog.booking_id == booking_id)
            .order_by(AttendanceLog.timestamp.asc(), AttendanceLog.id.asc())
        )
        return self._execute_query(query)

    def get_stats(self, student_id: str) -> Optional[StudentStats]:
        return self.db.get(StudentStats, student_id)

    def upsert_stats(
        self,
        student_id: str,
        total_classes: int,
        attended_classes: int,
        attendance_rate: float,
        now: datetime,
    ) -> StudentStats:
        """Overwrite the stats row with freshly computed values."""
        stats = self.get_stats(student_id)
        if stats is None:
            stats = StudentStats(student_id=student_id)
            self.db.add(stats)
        stats.total_classes = total_classes
        stats.attended_classes = attended_classes
        stats.attendance_rate = attendance_rate
        stats.last_updated = now
        self.db.flush()
        return stats
