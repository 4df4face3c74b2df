# lesson_booking/tasks/enqueue.py
"""
Task enqueue helper used by services.

Tasks are sent by name so that services never import the task modules
(which import the services back).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from .celery_app import celery_app

logger = logging.getLogger(__name__)

DELIVER_OUTBOX_EVENT = "outbox.deliver_event"


def enqueue_task(
    task_name: str,
    args: Optional[Tuple[Any, ...]] = None,
    kwargs: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> Any:
    """
    Send a Celery task by name.

    Args:
        task_name: Registered task name (e.g. "outbox.deliver_event")
        args: Positional arguments for the task
        kwargs: Keyword arguments for the task
        **options: Extra apply_async options (countdown, queue, ...)

    Returns:
        AsyncResult from Celery
    """
    result = celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {}, **options)
    logger.debug("Enqueued %s id=%s", task_name, getattr(result, "id", None))
    return result
