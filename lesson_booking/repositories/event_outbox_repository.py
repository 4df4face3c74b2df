# lesson_booking/repositories/event_outbox_repository.py
"""
Repository for outbound task rows.

Implements transactional enqueue, pending fetch with row locking, and the
status updates the outbound task dispatcher needs.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Optional, cast

from sqlalchemy import Select, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from ..core.timezone_utils import utc_now
from ..database.session_utils import get_dialect_name
from ..models.event_outbox import EventOutbox, EventOutboxStatus

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    # ------------------------------------------------------------------ enqueue
    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: dict[str, Any],
        idempotency_key: str,
        next_attempt_at: Optional[datetime] = None,
    ) -> EventOutbox:
        """
        Insert a new outbox row unless one already exists for the idempotency key.

        Returns the persisted row (existing or newly created).
        """
        next_attempt = next_attempt_at or utc_now()
        event_id = str(ulid.ULID())
        values = dict(
            id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=idempotency_key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=next_attempt,
            created_at=next_attempt,
            updated_at=next_attempt,
        )

        inserted = False
        if self._dialect == "postgresql":
            pg_stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
                .returning(EventOutbox.id)
            )
            inserted = self.db.execute(pg_stmt).scalar_one_or_none() is not None
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")
            result = self.db.execute(stmt)
            inserted = bool(getattr(result, "rowcount", 0))

        if inserted:
            self.db.flush()
            row = cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))
            if row is None:
                raise RuntimeError("Inserted outbox row could not be reloaded")
            return row

        # Existing row - return without mutating attempt counters
        existing = self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing is None:
            raise RuntimeError("Outbox row not found after enqueue conflict")
        logger.debug("Outbox enqueue deduplicated for key %s", idempotency_key)
        return cast(EventOutbox, existing)

    # ---------------------------------------------------------------- fetchers
    def fetch_pending(self, limit: int = 200, now: Optional[datetime] = None) -> list[EventOutbox]:
        """Return pending rows eligible for delivery ordered by attempt time."""
        stmt: Select[Any] = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= (now or utc_now()))
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return cast(list[EventOutbox], self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str, for_update: bool = False) -> Optional[EventOutbox]:
        """Fetch a single outbox row, locking it on PostgreSQL when asked."""
        stmt = select(EventOutbox).where(EventOutbox.id == event_id).execution_options(
            populate_existing=True
        )
        if for_update and self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return cast(Optional[EventOutbox], self.db.execute(stmt).scalar_one_or_none())

    def has_live_task(self, event_type: str, aggregate_id: str) -> bool:
        """True when a PENDING row of this type exists for the aggregate."""
        stmt = (
            select(EventOutbox.id)
            .where(EventOutbox.event_type == event_type)
            .where(EventOutbox.aggregate_id == aggregate_id)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None

    # ------------------------------------------------------------- state updates
    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        """Update row to SENT state."""
        now = utc_now()
        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(
                status=EventOutboxStatus.SENT.value,
                attempt_count=attempt_count,
                last_error=None,
                next_attempt_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.db.flush()

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Update row after a delivery failure."""
        now = utc_now()
        values: dict[str, Any] = {
            "attempt_count": attempt_count,
            "updated_at": now,
            "last_error": (error[:1000] if error else None),
        }
        if terminal:
            values["status"] = EventOutboxStatus.FAILED.value
            values["next_attempt_at"] = now
        else:
            values["status"] = EventOutboxStatus.PENDING.value
            values["next_attempt_at"] = now + timedelta(seconds=max(backoff_seconds, 1))

        self.db.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        self.db.flush()
