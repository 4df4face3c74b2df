"""
Database models for the lesson booking engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .attendance import AttendanceAction, AttendanceLog, StudentStats
from .availability import AvailabilityWindow
from .booking import Booking, BookingStatus
from .event_outbox import EventOutbox, EventOutboxStatus, NotificationDelivery
from .package import Package
from .topic import Topic
from .user import User, UserRole

__all__ = [
    "AttendanceAction",
    "AttendanceLog",
    "AvailabilityWindow",
    "Booking",
    "BookingStatus",
    "EventOutbox",
    "EventOutboxStatus",
    "NotificationDelivery",
    "Package",
    "StudentStats",
    "Topic",
    "User",
    "UserRole",
]
