# lesson_booking/services/__init__.py
"""
Service layer for the booking engine.

Services own transactions; repositories never commit.
"""

from .attendance_tracker import AttendanceTracker
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_lifecycle import BookingLifecycleManager
from .credit_ledger import CreditLedger
from .dependencies import BookingEngine, build_booking_engine, build_calendar_gateway
from .notification_provider import NotificationGateway, NotificationProvider
from .outbound_dispatcher import OutboundTaskDispatcher, UnknownTaskKindError
from .slot_planner import SlotPlanner

__all__ = [
    "AttendanceTracker",
    "AvailabilityService",
    "BaseService",
    "BookingEngine",
    "BookingLifecycleManager",
    "CreditLedger",
    "NotificationGateway",
    "NotificationProvider",
    "OutboundTaskDispatcher",
    "SlotPlanner",
    "UnknownTaskKindError",
    "build_booking_engine",
    "build_calendar_gateway",
]
