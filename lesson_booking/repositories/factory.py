# lesson_booking/repositories/factory.py
"""
Repository Factory for the booking engine

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING, Type, TypeVar

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .attendance_repository import AttendanceRepository
    from .availability_repository import AvailabilityRepository
    from .booking_repository import BookingRepository
    from .event_outbox_repository import EventOutboxRepository
    from .notification_delivery_repository import NotificationDeliveryRepository
    from .package_repository import PackageRepository
    from .user_repository import UserRepository

T = TypeVar("T")


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model: Type[T]) -> BaseRepository[T]:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_package_repository(db: Session) -> "PackageRepository":
        from .package_repository import PackageRepository

        return PackageRepository(db)

    @staticmethod
    def create_attendance_repository(db: Session) -> "AttendanceRepository":
        from .attendance_repository import AttendanceRepository

        return AttendanceRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)

    @staticmethod
    def create_notification_delivery_repository(db: Session) -> "NotificationDeliveryRepository":
        from .notification_delivery_repository import NotificationDeliveryRepository

        return NotificationDeliveryRepository(db)
