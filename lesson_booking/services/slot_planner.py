# lesson_booking/services/slot_planner.py
"""
Slot Planner Service

Gathers a teacher's weekly windows, external calendar busy time and local
bookings for one teacher-local day and turns them into offerable slots.
Also provides the point check used before a booking is written, since a slot
list handed out earlier may be stale by the time it is booked.
"""

from datetime import date, datetime
import logging
from typing import Callable, List, Optional

import pytz
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import BookingConflictException, NotFoundException, ValidationException
from ..core.timezone_utils import (
    day_of_week,
    local_day_bounds_utc,
    local_to_utc,
    resolve_timezone,
    to_local,
    utc_now,
)
from ..domain.intervals import Slot, TimeInterval, intersects_any, subtract_interval
from ..domain.slots import compute_slots
from ..integrations.calendar_gateway import CalendarGateway
from ..models.user import User, UserRole
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class SlotPlanner(BaseService):
    """Read-only: never writes bookings or availability."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        calendar: CalendarGateway,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.settings = settings
        self.calendar = calendar
        self._clock = clock
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def require_teacher(self, teacher_id: str) -> User:
        teacher = self.user_repository.get_by_id(teacher_id, load_relationships=False)
        if teacher is None:
            raise NotFoundException(f"Teacher {teacher_id} not found", code="TEACHER_NOT_FOUND")
        if teacher.role != UserRole.TEACHER.value or not teacher.is_active:
            raise ValidationException(
                f"User {teacher_id} is not an active teacher",
                code="NOT_A_TEACHER",
                details={"user_id": teacher_id},
            )
        return teacher

    def teacher_timezone(self, teacher: User) -> pytz.BaseTzInfo:
        return resolve_timezone(teacher.timezone, self.settings.default_timezone)

    def windows_for_date(
        self, teacher: User, target_date: date, tz: pytz.BaseTzInfo
    ) -> List[TimeInterval]:
        """The teacher's active windows on ``target_date``, as UTC intervals."""
        windows = self.availability_repository.get_active_windows(
            teacher.id, day_of_week(target_date)
        )
        return [
            TimeInterval(
                local_to_utc(target_date, window.start_time, tz),
                local_to_utc(target_date, window.end_time, tz),
            )
            for window in windows
        ]

    @BaseService.measure_operation("plan_slots")
    def plan(
        self,
        teacher_id: str,
        target_date: date,
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        buffer_minutes: Optional[int] = None,
    ) -> List[Slot]:
        """
        Offerable slots for a teacher on a teacher-local calendar date.

        Args:
            teacher_id: Teacher to plan for
            target_date: Local date in the teacher's timezone
            duration_minutes: Lesson length (defaults to the configured lesson length)
            now: Clock reading (defaults to the service clock)
            buffer_minutes: Minimum notice (defaults to the configured buffer)

        Returns:
            Slots ordered by start

        Raises:
            ExternalServiceException: The external calendar could not report busy time
        """
        duration = (
            self.settings.default_lesson_duration_minutes
            if duration_minutes is None
            else duration_minutes
        )
        if duration <= 0:
            raise ValidationException("Duration must be positive", code="INVALID_DURATION")
        buffer = self.settings.booking_buffer_minutes if buffer_minutes is None else buffer_minutes
        now = now or self._clock()

        teacher = self.require_teacher(teacher_id)
        tz = self.teacher_timezone(teacher)
        windows = self.windows_for_date(teacher, target_date, tz)
        if not windows:
            return []

        day_start, day_end = local_day_bounds_utc(target_date, tz)
        busy = list(self.calendar.list_busy(teacher.calendar_ref, day_start, day_end))
        busy.extend(
            booking.interval
            for booking in self.booking_repository.list_active_for_teacher_between(
                teacher.id, day_start, day_end
            )
        )

        slots = compute_slots(
            windows,
            busy,
            duration_minutes=duration,
            now=now,
            buffer_minutes=buffer,
            granularity_minutes=self.settings.slot_granularity_minutes,
        )
        self.log_operation(
            "plan_slots",
            teacher_id=teacher_id,
            date=target_date.isoformat(),
            duration_minutes=duration,
            slot_count=len(slots),
        )
        return slots

    def ensure_interval_available(
        self,
        teacher: User,
        interval: TimeInterval,
        ignore: Optional[TimeInterval] = None,
    ) -> None:
        """
        Check that ``interval`` lies inside one availability window and, when
        configured, is free on the external calendar.

        ``ignore`` is removed from the external busy set (the booking's own
        current slot during a reschedule). Local bookings are checked later,
        under the schedule lock.
        """
        tz = self.teacher_timezone(teacher)
        local_date = to_local(interval.start, tz).date()
        windows = self.windows_for_date(teacher, local_date, tz)
        if not any(window.contains(interval) for window in windows):
            raise BookingConflictException(
                "Requested time is outside the teacher's availability",
                details={"reason": "outside_availability", "start": interval.start.isoformat()},
            )

        if not self.settings.require_calendar_check_on_booking:
            return

        busy = self.calendar.list_busy(teacher.calendar_ref, interval.start, interval.end)
        if ignore is not None:
            busy = subtract_interval(busy, ignore)
        if intersects_any(interval, busy):
            raise BookingConflictException(
                "Requested time is busy on the teacher's calendar",
                details={"reason": "calendar_busy", "start": interval.start.isoformat()},
            )
