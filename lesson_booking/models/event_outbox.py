# lesson_booking/models/event_outbox.py
"""
Outbound task persistence.

Calendar synchronisation and notifications are written to the outbox inside
the booking transaction and delivered afterwards with retry and backoff.
``notification_delivery`` records what the notification provider accepted,
keyed by idempotency key so a retried task is not sent twice downstream.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON
import ulid

from ..database import Base


def _now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for default factories."""
    return datetime.now(timezone.utc)


class EventOutboxStatus(str, Enum):
    """Lifecycle states for an outbound task."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventOutbox(Base):
    """Transactional outbox entry pending delivery."""

    __tablename__ = "event_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    aggregate_id = Column(String(64), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    status = Column(String(20), nullable=False, default=EventOutboxStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),
        Index("ix_event_outbox_due", "status", "next_attempt_at"),
    )

    @property
    def is_live(self) -> bool:
        return self.status == EventOutboxStatus.PENDING.value

    def __repr__(self) -> str:
        return (
            f"<EventOutbox {self.id}: {self.event_type} aggregate={self.aggregate_id} "
            f"status={self.status} attempts={self.attempt_count}>"
        )


class NotificationDelivery(Base):
    """Record of dispatched notifications to enforce idempotency downstream."""

    __tablename__ = "notification_delivery"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    attempt_count = Column(Integer, nullable=False, default=1)
    delivered_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_notification_delivery_idempotency"),
    )

    def touch(self, payload: Dict[str, Any] | None = None) -> None:
        """Update delivery metadata if a duplicate send is attempted."""
        self.attempt_count += 1
        self.delivered_at = _now_utc()
        if payload is not None:
            self.payload = payload
