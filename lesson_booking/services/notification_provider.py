# lesson_booking/services/notification_provider.py
"""
Notification gateway contract and the provider used by the outbound dispatcher.

Rendering and delivery of messages happen outside the booking engine. The
provider records each dispatch in ``notification_delivery`` keyed by an
idempotency key derived from the snapshot, so a retried task never produces a
second downstream message.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingSnapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationGateway(Protocol):
    """Best-effort booking notices. Each call reports whether it was accepted."""

    def send_booking_confirmation(self, snapshot: BookingSnapshot) -> bool:
        ...

    def send_booking_cancellation(
        self, snapshot: BookingSnapshot, cancelled_by: Optional[str] = None
    ) -> bool:
        ...

    def send_booking_reschedule(
        self, previous: BookingSnapshot, current: BookingSnapshot
    ) -> bool:
        ...


@dataclass(slots=True)
class NotificationDispatchResult:
    """Metadata describing a recorded provider send."""

    idempotency_key: str
    event_type: str
    attempt_count: int


class NotificationProvider:
    """
    Provider that writes to notification_delivery in the caller's session.

    Usage:
        provider = NotificationProvider(db)
        provider.send_booking_confirmation(snapshot)
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.delivery_repository = RepositoryFactory.create_notification_delivery_repository(db)

    def send(
        self,
        event_type: str,
        payload: Dict[str, Any],
        idempotency_key: str,
    ) -> NotificationDispatchResult:
        if not idempotency_key:
            raise ValueError("idempotency_key is required for notification dispatch")

        logger.info(
            "Dispatching notification %s key=%s payload=%s",
            event_type,
            idempotency_key,
            json.dumps(payload, sort_keys=True, default=str)[:500],
        )
        record = self.delivery_repository.record_delivery(event_type, idempotency_key, payload)
        if record.attempt_count > 1:
            logger.info(
                "Duplicate notification suppressed key=%s attempts=%s",
                idempotency_key,
                record.attempt_count,
            )
        return NotificationDispatchResult(
            idempotency_key=idempotency_key,
            event_type=event_type,
            attempt_count=record.attempt_count,
        )

    def send_booking_confirmation(self, snapshot: BookingSnapshot) -> bool:
        self.send(
            "booking.confirmation",
            {"booking": snapshot.model_dump(mode="json")},
            f"booking.confirmation:{snapshot.booking_id}",
        )
        return True

    def send_booking_cancellation(
        self, snapshot: BookingSnapshot, cancelled_by: Optional[str] = None
    ) -> bool:
        self.send(
            "booking.cancellation",
            {"booking": snapshot.model_dump(mode="json"), "cancelled_by": cancelled_by},
            f"booking.cancellation:{snapshot.booking_id}",
        )
        return True

    def send_booking_reschedule(
        self, previous: BookingSnapshot, current: BookingSnapshot
    ) -> bool:
        self.send(
            "booking.reschedule",
            {
                "previous": previous.model_dump(mode="json"),
                "current": current.model_dump(mode="json"),
            },
            f"booking.reschedule:{current.booking_id}:v{current.version}",
        )
        return True
