# lesson_booking/services/availability_service.py
"""
Availability Service

Teachers edit their weekly recurring windows here. A save replaces the whole
weekly set; windows on the same day must not overlap (touching is fine, the
ranges are half-open).
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.exceptions import AvailabilityOverlapException, ValidationException
from ..models.availability import AvailabilityWindow
from ..models.user import UserRole
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import WeeklyWindow
from .base import BaseService

logger = logging.getLogger(__name__)

WindowInput = Union[WeeklyWindow, Mapping[str, Any]]


class AvailabilityService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    def list_weekly_availability(
        self, teacher_id: str, include_inactive: bool = False
    ) -> List[AvailabilityWindow]:
        return self.availability_repository.list_for_teacher(teacher_id, include_inactive)

    @BaseService.measure_operation("set_weekly_availability")
    def set_weekly_availability(
        self, teacher_id: str, windows: Iterable[WindowInput]
    ) -> List[AvailabilityWindow]:
        """
        Replace a teacher's weekly windows.

        Raises:
            ValidationException: Malformed window or the user is not a teacher
            AvailabilityOverlapException: Two active windows overlap on one day
        """
        if self.user_repository.get_active_with_role(teacher_id, UserRole.TEACHER) is None:
            raise ValidationException(
                f"User {teacher_id} is not an active teacher",
                code="NOT_A_TEACHER",
                details={"user_id": teacher_id},
            )

        parsed = [self._parse_window(window) for window in windows]
        self._validate_no_overlaps(parsed)

        with self.transaction():
            saved = self.availability_repository.replace_for_teacher(
                teacher_id, [window.model_dump() for window in parsed]
            )

        self.log_operation("set_weekly_availability", teacher_id=teacher_id, windows=len(saved))
        return saved

    @staticmethod
    def _parse_window(window: WindowInput) -> WeeklyWindow:
        if isinstance(window, WeeklyWindow):
            return window
        try:
            return WeeklyWindow.model_validate(dict(window))
        except ValidationError as e:
            raise ValidationException(
                "Invalid availability window",
                code="INVALID_AVAILABILITY_WINDOW",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    @staticmethod
    def _validate_no_overlaps(windows: List[WeeklyWindow]) -> None:
        by_day: Dict[int, List[WeeklyWindow]] = {}
        for window in windows:
            if window.is_active:
                by_day.setdefault(window.day_of_week, []).append(window)

        for day, day_windows in by_day.items():
            day_windows.sort(key=lambda w: (w.start_time, w.end_time))
            active = day_windows[0]
            for window in day_windows[1:]:
                if window.start_time < active.end_time:
                    raise AvailabilityOverlapException(day, window.label(), active.label())
                if window.end_time > active.end_time:
                    active = window
