# lesson_booking/repositories/availability_repository.py
"""
Availability Repository for the booking engine

Weekly recurring windows per teacher. The scheduling core only reads them;
AvailabilityService replaces a teacher's set wholesale.
"""

import logging
from typing import Iterable, List, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import AvailabilityWindow
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilityWindow]):
    def __init__(self, db: Session):
        super().__init__(db, AvailabilityWindow)

    def get_active_windows(self, teacher_id: str, day_of_week: int) -> List[AvailabilityWindow]:
        """Active windows for one day (0 = Sunday), ordered by start time."""
        query = (
            self.db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.teacher_id == teacher_id,
                AvailabilityWindow.day_of_week == day_of_week,
                AvailabilityWindow.is_active.is_(True),
            )
            .order_by(AvailabilityWindow.start_time.asc(), AvailabilityWindow.end_time.asc())
        )
        return self._execute_query(query)

    def list_for_teacher(
        self, teacher_id: str, include_inactive: bool = False
    ) -> List[AvailabilityWindow]:
        query = self.db.query(AvailabilityWindow).filter(
            AvailabilityWindow.teacher_id == teacher_id
        )
        if not include_inactive:
            query = query.filter(AvailabilityWindow.is_active.is_(True))
        return self._execute_query(
            query.order_by(
                AvailabilityWindow.day_of_week.asc(), AvailabilityWindow.start_time.asc()
            )
        )

    def replace_for_teacher(
        self, teacher_id: str, windows: Iterable[Mapping[str, object]]
    ) -> List[AvailabilityWindow]:
        """
        Delete the teacher's windows and insert ``windows`` in their place.

        Does NOT commit.
        """
        try:
            self.db.query(AvailabilityWindow).filter(
                AvailabilityWindow.teacher_id == teacher_id
            ).delete(synchronize_session=False)
            created = [AvailabilityWindow(teacher_id=teacher_id, **dict(data)) for data in windows]
            self.db.add_all(created)
            self.db.flush()
            return created
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing availability for {teacher_id}: {str(e)}")
            raise RepositoryException(f"Failed to replace availability: {str(e)}")
