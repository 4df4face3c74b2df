# lesson_booking/services/outbound_dispatcher.py
"""
Outbound Task Dispatcher

Delivers ``event_outbox`` rows to the handler registered for their kind.
Success marks the row SENT together with whatever the handler wrote; failure
rolls the handler's writes back, then reschedules the row with backoff or,
once attempts are exhausted, marks it FAILED. A failure here never touches
booking or ledger state that was committed before the task was enqueued.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.outbound import parse_outbound_payload
from .base import BaseService

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Any], None]

OUTCOME_SENT = "sent"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


class UnknownTaskKindError(LookupError):
    """No handler is registered for an outbox row's kind."""


class OutboundTaskDispatcher(BaseService):
    def __init__(self, db: Session, settings: Settings):
        super().__init__(db)
        self.settings = settings
        self.outbox_repository = RepositoryFactory.create_event_outbox_repository(db)
        self._handlers: Dict[str, TaskHandler] = {}

    def register(self, kind: str, handler: TaskHandler) -> None:
        self._handlers[kind] = handler

    def next_backoff(self, attempt_number: int) -> int:
        """Return backoff delay for the given attempt (1-indexed)."""
        schedule = self.settings.outbox_backoff_seconds
        index = max(0, min(attempt_number - 1, len(schedule) - 1))
        return schedule[index]

    @BaseService.measure_operation("deliver_task")
    def deliver(self, event_id: str) -> str:
        """Attempt one outbox row and return the outcome label."""
        event = self.outbox_repository.get_by_id(event_id)
        if event is None:
            logger.warning("Outbox event %s missing; skipping", event_id)
            return OUTCOME_SKIPPED
        if not event.is_live:
            return OUTCOME_SKIPPED

        kind = str(event.event_type)
        aggregate_id = str(event.aggregate_id)
        attempt_number = int(event.attempt_count) + 1
        # Handlers call external services; no row lock may be held meanwhile
        self.db.commit()

        try:
            payload = parse_outbound_payload(event.payload)
            handler = self._handlers.get(payload.kind)
            if handler is None:
                raise UnknownTaskKindError(f"No handler registered for {payload.kind}")
            handler(payload)
            self.outbox_repository.mark_sent(event_id, attempt_number)
            self.db.commit()
        except Exception as exc:
            self.db.rollback()
            return self._record_failure(event_id, kind, aggregate_id, attempt_number, exc)

        prometheus_metrics.record_outbound_outcome(kind, OUTCOME_SENT)
        logger.info(
            "Delivered outbox event %s type=%s attempts=%s",
            event_id,
            kind,
            attempt_number,
            extra={"booking_id": aggregate_id, "task_kind": kind},
        )
        return OUTCOME_SENT

    def _record_failure(
        self,
        event_id: str,
        kind: str,
        aggregate_id: str,
        attempt_number: int,
        exc: Exception,
    ) -> str:
        terminal = attempt_number >= self.settings.outbox_max_attempts or isinstance(
            exc, (ValidationError, UnknownTaskKindError)
        )
        backoff = self.next_backoff(attempt_number)
        self.outbox_repository.mark_failed(
            event_id,
            attempt_count=attempt_number,
            backoff_seconds=backoff,
            error=f"{type(exc).__name__}: {exc}",
            terminal=terminal,
        )
        self.db.commit()

        context = {
            "booking_id": aggregate_id,
            "task_kind": kind,
            "attempt": attempt_number,
            "error_type": type(exc).__name__,
        }
        if terminal:
            prometheus_metrics.record_outbound_outcome(kind, OUTCOME_FAILED)
            logger.error(
                "Outbox event %s failed permanently after %s attempts: %s",
                event_id,
                attempt_number,
                exc,
                extra=context,
            )
            return OUTCOME_FAILED

        prometheus_metrics.record_outbound_outcome(kind, OUTCOME_RETRY)
        logger.warning(
            "Outbox event %s failed (attempt %s); retrying in %ss: %s",
            event_id,
            attempt_number,
            backoff,
            exc,
            extra=context,
        )
        return OUTCOME_RETRY

    def dispatch(self, event_ids: Iterable[str]) -> Dict[str, int]:
        """Deliver the given rows in order and tally the outcomes."""
        outcomes: Dict[str, int] = {}
        for event_id in event_ids:
            outcome = self.deliver(event_id)
            outcomes[outcome] = outcomes.get(outcome, 0) + 1
        return outcomes

    def pending_ids(self, limit: Optional[int] = None) -> list[str]:
        """Ids of rows due for delivery; releases any row locks before returning."""
        rows = self.outbox_repository.fetch_pending(limit=limit or self.settings.outbox_batch_size)
        ids = [str(row.id) for row in rows]
        self.db.commit()
        return ids

    def dispatch_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        ids = self.pending_ids(limit)
        if ids:
            logger.info("Dispatching %s pending outbox events", len(ids))
        return self.dispatch(ids)
