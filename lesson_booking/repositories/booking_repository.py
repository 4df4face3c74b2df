# lesson_booking/repositories/booking_repository.py
"""
Booking Repository for the booking engine

Handles all data access for bookings. Every interval query is half-open:
a booking occupies [scheduled_at, ends_at), and CANCELLED rows never occupy
anything.
"""

from datetime import datetime
import logging
from typing import List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.user import UserRole
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(Booking.student),
            joinedload(Booking.teacher),
            joinedload(Booking.topic),
        )

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """
        Load a booking with its latest committed state.

        Takes a row lock on PostgreSQL; everywhere else the schedule lock
        held by the caller provides the isolation.
        """
        try:
            query = (
                self.db.query(Booking)
                .filter(Booking.id == booking_id)
                .populate_existing()
            )
            if self.dialect_name == "postgresql":
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    def find_conflicts(
        self,
        teacher_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Return the teacher's non-cancelled bookings intersecting [start, end).

        Args:
            teacher_id: The teacher whose calendar is checked
            start: Interval start (UTC)
            end: Interval end (UTC)
            exclude_booking_id: Optional booking to ignore (reschedule)
        """
        query = self.db.query(Booking).filter(
            Booking.teacher_id == teacher_id,
            Booking.status != BookingStatus.CANCELLED.value,
            Booking.scheduled_at < end,
            Booking.ends_at > start,
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return self._execute_query(query.order_by(Booking.scheduled_at))

    def list_active_for_teacher_between(
        self, teacher_id: str, start: datetime, end: datetime
    ) -> List[Booking]:
        """Non-cancelled bookings of a teacher that touch the given range."""
        return self.find_conflicts(teacher_id, start, end)

    def get_upcoming_for_user(
        self,
        user_id: str,
        role: str,
        now: datetime,
        limit: Optional[int] = None,
    ) -> List[Booking]:
        """Future SCHEDULED bookings for a student or teacher, soonest first."""
        column = Booking.teacher_id if role == UserRole.TEACHER.value else Booking.student_id
        query = self._apply_eager_loading(
            self.db.query(Booking).filter(
                column == user_id,
                Booking.status == BookingStatus.SCHEDULED.value,
                Booking.scheduled_at > now,
            )
        ).order_by(Booking.scheduled_at.asc(), Booking.id.asc())
        if limit:
            query = query.limit(limit)
        return self._execute_query(query)

    def count_attendance_outcomes(self, student_id: str) -> Tuple[int, int]:
        """
        Count the student's attended and missed lessons.

        Returns:
            (total, attended) where total counts COMPLETED and NO_SHOW
        """
        try:
            attended_expr = func.sum(
                case((Booking.status == BookingStatus.COMPLETED.value, 1), else_=0)
            )
            total, attended = (
                self.db.query(func.count(Booking.id), attended_expr)
                .filter(
                    Booking.student_id == student_id,
                    Booking.status.in_(
                        [BookingStatus.COMPLETED.value, BookingStatus.NO_SHOW.value]
                    ),
                )
                .one()
            )
            return int(total or 0), int(attended or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting attendance for {student_id}: {str(e)}")
            raise RepositoryException(f"Failed to count attendance: {str(e)}")

    def get_missing_calendar_events(self, now: datetime, limit: int = 100) -> List[Booking]:
        """Future SCHEDULED bookings that never received an external event."""
        query = (
            self.db.query(Booking)
            .filter(
                Booking.status == BookingStatus.SCHEDULED.value,
                Booking.scheduled_at > now,
                Booking.external_event_ref.is_(None),
            )
            .order_by(Booking.scheduled_at.asc())
            .limit(limit)
        )
        return self._execute_query(query)
