# lesson_booking/services/booking_lifecycle.py
"""
Booking Lifecycle Manager

Orchestrates create, cancel, reschedule and attendance transitions.

Each transition is one local atomic unit, taken under the schedule lock of
the teacher and the student involved:
    conflict check -> booking write -> credit ledger change -> outbox enqueue
External calendar and notification work is only enqueued inside that unit
and is dispatched after the commit. Its failures are logged and retried by
the dispatcher; they never undo the committed booking or credit change.

    SCHEDULED -> COMPLETED | NO_SHOW | CANCELLED   (terminal)
    SCHEDULED -> SCHEDULED                         (reschedule)
"""

from datetime import date, datetime
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..core.booking_lock import schedule_lock, student_key, teacher_key
from ..core.config import Settings
from ..core.exceptions import (
    BookingConflictException,
    ExternalServiceException,
    InsufficientNoticeException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..domain.intervals import Slot, TimeInterval
from ..integrations.calendar_gateway import CalendarGateway
from ..models.booking import Booking, BookingStatus
from ..models.topic import Topic
from ..models.user import User, UserRole
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingSnapshot, CalendarEventResult
from ..schemas.outbound import (
    BookingCancellationNotice,
    BookingConfirmationNotice,
    BookingRescheduleNotice,
    CancelCalendarEvent,
    CreateCalendarEvent,
    OutboundPayload,
    UpdateCalendarEvent,
)
from ..tasks.enqueue import DELIVER_OUTBOX_EVENT, enqueue_task
from .attendance_tracker import AttendanceTracker
from .base import BaseService
from .credit_ledger import CreditLedger
from .notification_provider import NotificationGateway
from .outbound_dispatcher import OutboundTaskDispatcher
from .slot_planner import SlotPlanner

logger = logging.getLogger(__name__)


class BookingLifecycleManager(BaseService):
    """Sole writer of booking rows."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        *,
        calendar: CalendarGateway,
        notifications: NotificationGateway,
        slot_planner: SlotPlanner,
        credit_ledger: CreditLedger,
        attendance_tracker: AttendanceTracker,
        dispatcher: OutboundTaskDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.settings = settings
        self.calendar = calendar
        self.notifications = notifications
        self.slot_planner = slot_planner
        self.credit_ledger = credit_ledger
        self.attendance_tracker = attendance_tracker
        self.dispatcher = dispatcher
        self._clock = clock

        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.topic_repository = RepositoryFactory.create_base_repository(db, Topic)
        self.outbox_repository = RepositoryFactory.create_event_outbox_repository(db)

        self._register_task_handlers()

    # ------------------------------------------------------------------ queries

    def plan_slots(
        self,
        teacher_id: str,
        target_date: date,
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Slot]:
        """Offerable slots; fails with ExternalServiceException if busy time is unknown."""
        return self.slot_planner.plan(
            teacher_id, target_date, duration_minutes, now=now or self._clock()
        )

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    @BaseService.measure_operation("get_upcoming_bookings")
    def get_upcoming_bookings(
        self,
        user_id: str,
        role: UserRole = UserRole.STUDENT,
        limit: Optional[int] = None,
    ) -> List[Booking]:
        """Future SCHEDULED bookings where the user is the student or the teacher."""
        return self.booking_repository.get_upcoming_for_user(
            user_id, role.value, self._clock(), limit=limit
        )

    # ------------------------------------------------------------------ create

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        student_id: str,
        teacher_id: str,
        topic_id: str,
        scheduled_at: datetime,
        duration_minutes: Optional[int] = None,
    ) -> Booking:
        """
        Reserve a lesson and consume one credit.

        Raises:
            ValidationException: Bad duration, naive or past start, or wrong roles
            InsufficientNoticeException: Start is inside the notice buffer
            NotFoundException: Unknown student, teacher or topic
            BookingConflictException: The interval is no longer free
            CreditExhaustedException: No active package with a lesson left
            ExternalServiceException: The external calendar could not report busy time
        """
        duration = (
            self.settings.default_lesson_duration_minutes
            if duration_minutes is None
            else duration_minutes
        )
        now = self._clock()
        interval = self._validate_schedule(scheduled_at, duration, now)

        self._require_user(student_id, UserRole.STUDENT)
        teacher = self._require_user(teacher_id, UserRole.TEACHER)
        if self.topic_repository.get_by_id(topic_id) is None:
            raise NotFoundException(f"Topic {topic_id} not found", code="TOPIC_NOT_FOUND")

        self.slot_planner.ensure_interval_available(teacher, interval)

        with schedule_lock([teacher_key(teacher_id), student_key(student_id)], self.settings):
            with self.transaction():
                self._ensure_no_local_conflict(teacher_id, interval)
                package_id = self.credit_ledger.debit(student_id, now=now)
                booking = self.booking_repository.create(
                    student_id=student_id,
                    teacher_id=teacher_id,
                    topic_id=topic_id,
                    scheduled_at=interval.start,
                    ends_at=interval.end,
                    duration_minutes=duration,
                    status=BookingStatus.SCHEDULED.value,
                    package_id=package_id,
                )
                task_ids = [
                    self._enqueue(booking, CreateCalendarEvent(booking_id=booking.id)),
                    self._enqueue(booking, BookingConfirmationNotice(booking_id=booking.id)),
                ]

        prometheus_metrics.record_transition("create")
        self.log_operation(
            "create_booking",
            booking_id=booking.id,
            teacher_id=teacher_id,
            student_id=student_id,
            package_id=package_id,
        )
        self._dispatch_after_commit(task_ids)
        return booking

    # ------------------------------------------------------------------ cancel

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        cancelled_by_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Cancel a SCHEDULED booking and give the lesson back.

        Not re-entrant: a second cancel fails with InvalidStateException and
        restores nothing.
        """
        existing = self.get_booking(booking_id)
        self._require_scheduled(existing, "cancel")

        with schedule_lock(self._lock_keys(existing), self.settings):
            with self.transaction():
                booking = self._load_for_update(booking_id)
                self._require_scheduled(booking, "cancel")
                now = self._clock()

                booking.cancel(cancelled_by_id, reason, now)
                self.booking_repository.flush()
                restored_to = self.credit_ledger.credit(
                    booking.student_id, booking.package_id, now=now
                )

                task_ids: List[str] = []
                if booking.external_event_ref:
                    task_ids.append(
                        self._enqueue(
                            booking,
                            CancelCalendarEvent(
                                booking_id=booking.id, event_ref=booking.external_event_ref
                            ),
                        )
                    )
                task_ids.append(
                    self._enqueue(
                        booking,
                        BookingCancellationNotice(
                            booking_id=booking.id,
                            snapshot=BookingSnapshot.from_booking(booking),
                            cancelled_by=cancelled_by_id,
                            reason=reason,
                        ),
                    )
                )

        prometheus_metrics.record_transition("cancel")
        self.log_operation(
            "cancel_booking",
            booking_id=booking_id,
            cancelled_by=cancelled_by_id,
            restored_package_id=restored_to,
        )
        self._dispatch_after_commit(task_ids)
        return booking

    # -------------------------------------------------------------- reschedule

    @BaseService.measure_operation("reschedule_booking")
    def reschedule_booking(
        self,
        booking_id: str,
        new_scheduled_at: datetime,
        new_duration_minutes: Optional[int] = None,
    ) -> Booking:
        """
        Move a SCHEDULED booking to a new interval on the same row.

        No credit moves. The booking's own current interval is ignored by the
        conflict checks; on conflict the booking is left unchanged.
        """
        existing = self.get_booking(booking_id)
        self._require_scheduled(existing, "reschedule")

        duration = (
            existing.duration_minutes if new_duration_minutes is None else new_duration_minutes
        )
        now = self._clock()
        interval = self._validate_schedule(new_scheduled_at, duration, now)
        self.slot_planner.ensure_interval_available(
            existing.teacher, interval, ignore=existing.interval
        )

        with schedule_lock(self._lock_keys(existing), self.settings):
            with self.transaction():
                booking = self._load_for_update(booking_id)
                self._require_scheduled(booking, "reschedule")
                self._ensure_no_local_conflict(
                    booking.teacher_id, interval, exclude_booking_id=booking.id
                )

                previous = BookingSnapshot.from_booking(booking)
                booking.move_to(interval.start, duration)
                self.booking_repository.flush()
                current = BookingSnapshot.from_booking(booking)

                task_ids: List[str] = []
                if booking.external_event_ref:
                    task_ids.append(
                        self._enqueue(booking, UpdateCalendarEvent(booking_id=booking.id))
                    )
                task_ids.append(
                    self._enqueue(
                        booking,
                        BookingRescheduleNotice(
                            booking_id=booking.id, previous=previous, current=current
                        ),
                    )
                )

        prometheus_metrics.record_transition("reschedule")
        self.log_operation(
            "reschedule_booking",
            booking_id=booking_id,
            previous_start=previous.start.isoformat(),
            new_start=current.start.isoformat(),
        )
        self._dispatch_after_commit(task_ids)
        return booking

    # -------------------------------------------------------------- attendance

    @BaseService.measure_operation("mark_attendance")
    def mark_attendance(self, booking_id: str, attended: bool) -> Booking:
        """
        Close a SCHEDULED booking as COMPLETED or NO_SHOW.

        Marking before the lesson ends is allowed; timing policy belongs to
        the caller.
        """
        existing = self.get_booking(booking_id)
        self._require_scheduled(existing, "mark attendance for")

        with schedule_lock(self._lock_keys(existing), self.settings):
            with self.transaction():
                booking = self._load_for_update(booking_id)
                self._require_scheduled(booking, "mark attendance for")
                now = self._clock()

                booking.record_attendance(attended, now)
                self.attendance_tracker.record(booking.id, booking.student_id, attended, now)
                self.attendance_tracker.recompute_stats(booking.student_id)

        prometheus_metrics.record_transition("completed" if attended else "no_show")
        self.log_operation("mark_attendance", booking_id=booking_id, attended=attended)
        return booking

    # ---------------------------------------------------------- reconciliation

    @BaseService.measure_operation("attach_external_event")
    def attach_external_event(
        self, booking_id: str, event_ref: str, meeting_link: Optional[str] = None
    ) -> Booking:
        """Store calendar linkage on a booking. Never touches credit."""
        with self.transaction():
            booking = self._load_for_update(booking_id)
            task_ids = self._store_event_link(
                booking, CalendarEventResult(event_ref=event_ref, meeting_link=meeting_link)
            )
        self._dispatch_after_commit(task_ids)
        return booking

    @BaseService.measure_operation("reconcile_calendar_events")
    def reconcile_calendar_events(self, limit: int = 100) -> int:
        """
        Re-enqueue event creation for future SCHEDULED bookings that still have
        no external event and no pending creation task.

        Returns:
            Number of tasks enqueued
        """
        now = self._clock()
        task_ids: List[str] = []
        with self.transaction():
            for booking in self.booking_repository.get_missing_calendar_events(now, limit):
                if self.outbox_repository.has_live_task("calendar.create_event", booking.id):
                    continue
                task_ids.append(
                    self._enqueue(
                        booking,
                        CreateCalendarEvent(booking_id=booking.id),
                        key_suffix=f"reconcile:{int(now.timestamp())}",
                    )
                )

        if task_ids:
            self.logger.info("Re-enqueued calendar creation for %s bookings", len(task_ids))
        self._dispatch_after_commit(task_ids)
        return len(task_ids)

    def dispatch_pending(self, limit: Optional[int] = None) -> dict:
        """Deliver outbox rows that are due (retries included)."""
        return self.dispatcher.dispatch_pending(limit)

    # ---------------------------------------------------------------- helpers

    def _validate_schedule(
        self, scheduled_at: datetime, duration_minutes: int, now: datetime
    ) -> TimeInterval:
        if not isinstance(duration_minutes, int) or duration_minutes <= 0:
            raise ValidationException(
                "Duration must be a positive number of minutes",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes},
            )
        if scheduled_at.tzinfo is None:
            raise ValidationException(
                "scheduled_at must be timezone-aware", code="NAIVE_DATETIME"
            )
        interval = TimeInterval.from_duration(
            scheduled_at.astimezone(now.tzinfo), duration_minutes
        )
        if interval.start <= now:
            raise ValidationException(
                "Lessons must be scheduled in the future",
                code="START_IN_PAST",
                details={"scheduled_at": interval.start.isoformat()},
            )
        notice_minutes = (interval.start - now).total_seconds() / 60
        if notice_minutes < self.settings.booking_buffer_minutes:
            raise InsufficientNoticeException(self.settings.booking_buffer_minutes, notice_minutes)
        return interval

    def _require_user(self, user_id: str, role: UserRole) -> User:
        user = self.user_repository.get_by_id(user_id, load_relationships=False)
        label = role.value.lower()
        if user is None:
            raise NotFoundException(
                f"{label.capitalize()} {user_id} not found", code=f"{role.value}_NOT_FOUND"
            )
        if user.role != role.value or not user.is_active:
            raise ValidationException(
                f"User {user_id} is not an active {label}",
                code=f"NOT_A_{role.value}",
                details={"user_id": user_id},
            )
        return user

    @staticmethod
    def _require_scheduled(booking: Booking, action: str) -> None:
        if not booking.is_scheduled:
            raise InvalidStateException(booking.id, booking.status, action)

    @staticmethod
    def _lock_keys(booking: Booking) -> List[str]:
        return [teacher_key(booking.teacher_id), student_key(booking.student_id)]

    def _load_for_update(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def _ensure_no_local_conflict(
        self,
        teacher_id: str,
        interval: TimeInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        conflicts = self.booking_repository.find_conflicts(
            teacher_id, interval.start, interval.end, exclude_booking_id=exclude_booking_id
        )
        if conflicts:
            raise BookingConflictException(
                details={
                    "reason": "booking_overlap",
                    "conflicting_booking_ids": [conflict.id for conflict in conflicts],
                }
            )

    def _enqueue(
        self, booking: Booking, payload: OutboundPayload, key_suffix: Optional[str] = None
    ) -> str:
        suffix = key_suffix or f"v{booking.version}"
        row = self.outbox_repository.enqueue(
            event_type=payload.kind,
            aggregate_id=booking.id,
            payload=payload.model_dump(mode="json"),
            idempotency_key=f"{payload.kind}:{booking.id}:{suffix}",
        )
        return str(row.id)

    def _dispatch_after_commit(self, task_ids: List[str]) -> None:
        """
        Deliver freshly committed outbox rows: in-process when configured,
        otherwise one ``outbox.deliver_event`` task each. Rows that miss both
        stay PENDING for the periodic dispatcher.
        """
        if not task_ids:
            return
        if self.settings.outbox_dispatch_inline:
            try:
                self.dispatcher.dispatch(task_ids)
            except Exception as exc:
                self.logger.warning(
                    "Inline dispatch failed: %s",
                    exc,
                    extra={"task_ids": task_ids, "error_type": type(exc).__name__},
                )
                self.db.rollback()
            return
        if not self.settings.outbox_dispatch_via_celery:
            return
        for task_id in task_ids:
            try:
                enqueue_task(DELIVER_OUTBOX_EVENT, args=(task_id,))
            except Exception as exc:
                self.logger.warning(
                    "Could not hand outbox event %s to the worker: %s",
                    task_id,
                    exc,
                    extra={"task_id": task_id, "error_type": type(exc).__name__},
                )

    def _store_event_link(
        self,
        booking: Booking,
        result: CalendarEventResult,
        created_from: Optional[BookingSnapshot] = None,
    ) -> List[str]:
        """
        Persist calendar linkage. If the booking was cancelled while the event
        was being created, the fresh event is queued for cancellation; if it
        was moved, the event is queued for an update to the new time.
        """
        booking.external_event_ref = result.event_ref
        if result.meeting_link:
            booking.external_meeting_link = result.meeting_link
        self.booking_repository.flush()
        if booking.status == BookingStatus.CANCELLED.value:
            self.logger.info("Booking %s was cancelled; removing its new event", booking.id)
            return [
                self._enqueue(
                    booking,
                    CancelCalendarEvent(booking_id=booking.id, event_ref=result.event_ref),
                )
            ]
        if created_from is not None and (created_from.start, created_from.end) != (
            booking.start_utc,
            booking.end_utc,
        ):
            self.logger.info("Booking %s moved during event creation; updating it", booking.id)
            return [self._enqueue(booking, UpdateCalendarEvent(booking_id=booking.id))]
        return []

    # ---------------------------------------------------------- task handlers

    def _register_task_handlers(self) -> None:
        self.dispatcher.register("calendar.create_event", self._handle_create_event)
        self.dispatcher.register("calendar.update_event", self._handle_update_event)
        self.dispatcher.register("calendar.cancel_event", self._handle_cancel_event)
        self.dispatcher.register(
            "notification.booking_confirmation", self._handle_booking_confirmation
        )
        self.dispatcher.register(
            "notification.booking_cancellation", self._handle_booking_cancellation
        )
        self.dispatcher.register("notification.booking_reschedule", self._handle_booking_reschedule)

    def _calendar_snapshot(self, booking_id: str, *, linked: bool) -> Optional[BookingSnapshot]:
        """
        Unlocked read of a SCHEDULED booking for a calendar call, or None when
        the task no longer applies. The read transaction is closed before the
        caller talks to the calendar.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        applies = (
            booking is not None
            and booking.is_scheduled
            and bool(booking.external_event_ref) == linked
        )
        snapshot = BookingSnapshot.from_booking(booking) if applies else None
        self.db.commit()
        return snapshot

    def _handle_create_event(self, payload: CreateCalendarEvent) -> None:
        snapshot = self._calendar_snapshot(payload.booking_id, linked=False)
        if snapshot is None:
            self.logger.debug("Skipping calendar creation for %s", payload.booking_id)
            return
        result = self.calendar.create_event(snapshot)

        booking = self._load_for_update(payload.booking_id)
        if booking.external_event_ref and booking.external_event_ref != result.event_ref:
            self.logger.info(
                "Booking %s already linked to %s", booking.id, booking.external_event_ref
            )
            return
        # Enqueued rows from here are picked up by the periodic dispatcher
        self._store_event_link(booking, result, snapshot)

    def _handle_update_event(self, payload: UpdateCalendarEvent) -> None:
        snapshot = self._calendar_snapshot(payload.booking_id, linked=True)
        if snapshot is None or snapshot.external_event_ref is None:
            self.logger.debug("Skipping calendar update for %s", payload.booking_id)
            return
        result = self.calendar.update_event(snapshot.external_event_ref, snapshot)

        if result.meeting_link and result.meeting_link != snapshot.external_meeting_link:
            booking = self._load_for_update(payload.booking_id)
            if booking.external_event_ref == snapshot.external_event_ref:
                booking.external_meeting_link = result.meeting_link

    def _handle_cancel_event(self, payload: CancelCalendarEvent) -> None:
        self.calendar.cancel_event(payload.event_ref)

    def _handle_booking_confirmation(self, payload: BookingConfirmationNotice) -> None:
        booking = self.booking_repository.get_by_id(payload.booking_id)
        if booking is None or not booking.is_scheduled:
            return
        self._require_accepted(
            self.notifications.send_booking_confirmation(BookingSnapshot.from_booking(booking)),
            payload.kind,
        )

    def _handle_booking_cancellation(self, payload: BookingCancellationNotice) -> None:
        self._require_accepted(
            self.notifications.send_booking_cancellation(payload.snapshot, payload.cancelled_by),
            payload.kind,
        )

    def _handle_booking_reschedule(self, payload: BookingRescheduleNotice) -> None:
        self._require_accepted(
            self.notifications.send_booking_reschedule(payload.previous, payload.current),
            payload.kind,
        )

    @staticmethod
    def _require_accepted(accepted: bool, kind: str) -> None:
        if not accepted:
            raise ExternalServiceException(
                "Notification was not accepted", service="notifications", details={"kind": kind}
            )
