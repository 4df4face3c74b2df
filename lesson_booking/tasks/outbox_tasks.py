# lesson_booking/tasks/outbox_tasks.py
"""
Celery tasks for outbound calendar and notification work.

1. `outbox.dispatch_pending` periodically enqueues one delivery task per due row.
2. `outbox.deliver_event` delivers a single row. Retries and backoff are
   tracked on the row itself, so the task never retries through Celery.
3. `bookings.reconcile_calendar_events` re-enqueues calendar creation for
   bookings that ended up without an external event.
"""

from __future__ import annotations

from typing import Dict

from celery.utils.log import get_task_logger

from lesson_booking.database import session_scope
from lesson_booking.services.dependencies import build_booking_engine
from lesson_booking.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="outbox.dispatch_pending", max_retries=0)
def dispatch_pending() -> int:
    """
    Fetch due outbox rows and enqueue delivery tasks.

    Returns the number of rows scheduled.
    """
    with session_scope() as session:
        ids = build_booking_engine(session).dispatcher.pending_ids()
    for event_id in ids:
        deliver_event.apply_async((event_id,))
    if ids:
        logger.info("Scheduled %s outbox events for delivery", len(ids))
    return len(ids)


@celery_app.task(name="outbox.deliver_event", max_retries=0)
def deliver_event(event_id: str) -> str:
    with session_scope() as session:
        return build_booking_engine(session).dispatcher.deliver(event_id)


@celery_app.task(name="bookings.reconcile_calendar_events", max_retries=0)
def reconcile_calendar_events(limit: int = 100) -> Dict[str, int]:
    with session_scope() as session:
        enqueued = build_booking_engine(session).lifecycle.reconcile_calendar_events(limit)
    return {"enqueued": enqueued}
