# lesson_booking/services/dependencies.py
"""
Wiring for the booking engine.

``build_booking_engine`` assembles every service around one session so that
a booking change, its ledger change and its outbox rows share a transaction.
``get_booking_engine`` is the FastAPI dependency form.

Usage in routes:
    engine: BookingEngine = Depends(get_booking_engine)
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.config import Settings, get_settings
from ..core.timezone_utils import utc_now
from ..database import get_db
from ..integrations.calendar_gateway import CalendarGateway
from ..integrations.google_calendar_client import FakeCalendarClient, GoogleCalendarClient
from .attendance_tracker import AttendanceTracker
from .availability_service import AvailabilityService
from .booking_lifecycle import BookingLifecycleManager
from .credit_ledger import CreditLedger
from .notification_provider import NotificationGateway, NotificationProvider
from .outbound_dispatcher import OutboundTaskDispatcher
from .slot_planner import SlotPlanner

logger = logging.getLogger(__name__)


@dataclass
class BookingEngine:
    lifecycle: BookingLifecycleManager
    planner: SlotPlanner
    ledger: CreditLedger
    tracker: AttendanceTracker
    dispatcher: OutboundTaskDispatcher
    availability: AvailabilityService
    calendar: CalendarGateway


def build_calendar_gateway(settings: Settings) -> CalendarGateway:
    """Google Calendar in deployed environments, the in-memory fake otherwise."""
    if settings.calendar_provider == "google":
        if settings.google_service_account_key is None:
            raise ValueError("GOOGLE_SERVICE_ACCOUNT_KEY must be set when CALENDAR_PROVIDER=google")
        return GoogleCalendarClient(
            service_account_key=settings.google_service_account_key,
            calendar_id=settings.google_calendar_id,
            delegated_user=settings.google_delegated_user,
            event_timezone=settings.default_timezone,
            event_prefix=settings.calendar_event_prefix,
            timeout=settings.google_timeout_seconds,
        )
    logger.info("Using in-memory calendar gateway (provider=%s)", settings.calendar_provider)
    return FakeCalendarClient()


def build_booking_engine(
    db: Session,
    settings: Optional[Settings] = None,
    calendar: Optional[CalendarGateway] = None,
    notifications: Optional[NotificationGateway] = None,
    clock: Callable[[], datetime] = utc_now,
) -> BookingEngine:
    settings = settings or get_settings()
    calendar = calendar if calendar is not None else build_calendar_gateway(settings)
    notifications = notifications if notifications is not None else NotificationProvider(db)

    planner = SlotPlanner(db, settings, calendar, clock=clock)
    ledger = CreditLedger(db, settings, clock=clock)
    tracker = AttendanceTracker(db, clock=clock)
    dispatcher = OutboundTaskDispatcher(db, settings)
    lifecycle = BookingLifecycleManager(
        db,
        settings,
        calendar=calendar,
        notifications=notifications,
        slot_planner=planner,
        credit_ledger=ledger,
        attendance_tracker=tracker,
        dispatcher=dispatcher,
        clock=clock,
    )
    return BookingEngine(
        lifecycle=lifecycle,
        planner=planner,
        ledger=ledger,
        tracker=tracker,
        dispatcher=dispatcher,
        availability=AvailabilityService(db),
        calendar=calendar,
    )


def get_booking_engine(db: Session = Depends(get_db)) -> BookingEngine:
    return build_booking_engine(db)
