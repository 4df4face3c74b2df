# lesson_booking/services/attendance_tracker.py
"""
Attendance Tracker Service

Owns the attendance log and the per-student stats row. Stats are always
recomputed from booking statuses, never incremented, so duplicate or
concurrent attendance events cannot skew them.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.timezone_utils import utc_now
from ..models.attendance import AttendanceAction, AttendanceLog, StudentStats
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class AttendanceTracker(BaseService):
    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        super().__init__(db)
        self._clock = clock
        self.attendance_repository = RepositoryFactory.create_attendance_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def record(
        self,
        booking_id: str,
        student_id: str,
        attended: bool,
        at: Optional[datetime] = None,
        source: str = "manual",
    ) -> AttendanceLog:
        """Append one attendance decision to the log (does not commit)."""
        action = AttendanceAction.MARKED_PRESENT if attended else AttendanceAction.MARKED_ABSENT
        return self.attendance_repository.append_log(
            booking_id=booking_id,
            student_id=student_id,
            action=action,
            timestamp=at or self._clock(),
            source=source,
        )

    @BaseService.measure_operation("recompute_stats")
    def recompute_stats(self, student_id: str) -> StudentStats:
        """Recount COMPLETED / NO_SHOW bookings and overwrite the stats row."""
        # Pending status changes must be visible to the count
        self.db.flush()
        total, attended = self.booking_repository.count_attendance_outcomes(student_id)
        rate = attended / total if total else 0.0
        stats = self.attendance_repository.upsert_stats(
            student_id,
            total_classes=total,
            attended_classes=attended,
            attendance_rate=rate,
            now=self._clock(),
        )
        self.logger.debug(
            "Recomputed stats for %s: %s/%s", student_id, attended, total
        )
        return stats

    def get_stats(self, student_id: str) -> Optional[StudentStats]:
        return self.attendance_repository.get_stats(student_id)
