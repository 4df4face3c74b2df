# lesson_booking/repositories/notification_delivery_repository.py
"""
Repository for downstream notification delivery tracking.

Provides idempotent persistence used by the notification provider.
"""

from __future__ import annotations

from typing import Any, Optional, cast

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
import ulid

from ..core.timezone_utils import utc_now
from ..database.session_utils import get_dialect_name
from ..models.event_outbox import NotificationDelivery


class NotificationDeliveryRepository:
    """Data access helper for notification_delivery rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    def record_delivery(
        self,
        event_type: str,
        idempotency_key: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> NotificationDelivery:
        """
        Persist the delivery and enforce idempotency.

        A repeated key bumps the attempt count on the existing row instead of
        inserting a second one.
        """
        payload = payload or {}
        values = dict(
            id=str(ulid.ULID()),
            event_type=event_type,
            idempotency_key=idempotency_key,
            payload=payload,
            attempt_count=1,
            delivered_at=utc_now(),
        )

        if self._dialect == "postgresql":
            stmt = (
                pg_insert(NotificationDelivery)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
            )
        else:
            stmt = (
                sqlite_insert(NotificationDelivery)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
            )
        inserted = bool(getattr(self.db.execute(stmt), "rowcount", 0))
        self.db.flush()

        row = self.get_by_idempotency_key(idempotency_key)
        if row is None:
            raise RuntimeError("Notification delivery row missing after insert")
        if not inserted:
            row.touch(payload)
            self.db.flush()
        return row

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[NotificationDelivery]:
        stmt = (
            select(NotificationDelivery)
            .where(NotificationDelivery.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        return cast(Optional[NotificationDelivery], self.db.execute(stmt).scalar_one_or_none())
