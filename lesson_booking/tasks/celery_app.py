# lesson_booking/tasks/celery_app.py
"""
Celery application for the booking engine.

Workers deliver outbox rows and periodically re-enqueue missing calendar
events. Broker selection lives in Settings.get_broker_url.
"""

import logging
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from lesson_booking.core.config import Settings, get_settings


def get_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    return {
        "dispatch-pending-outbox": {
            "task": "outbox.dispatch_pending",
            "schedule": float(settings.outbox_dispatch_interval_seconds),
            "options": {"queue": "outbox"},
        },
        "reconcile-calendar-events": {
            "task": "bookings.reconcile_calendar_events",
            "schedule": float(settings.calendar_reconcile_interval_seconds),
            "options": {"queue": "outbox"},
        },
    }


def create_celery_app(settings: Settings | None = None) -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    settings = settings or get_settings()
    broker_url = settings.get_broker_url()

    celery_app = Celery("lesson_booking", broker=broker_url, backend=broker_url)

    base_config = {
        # Task settings
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "timezone": "UTC",
        "enable_utc": True,
        # Worker settings
        "worker_prefetch_multiplier": 4,
        "worker_max_tasks_per_child": 1000,
        # Task execution settings
        "task_soft_time_limit": 120,
        "task_time_limit": 300,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_hijack_root_logger": False,
        "broker_transport_options": {"visibility_timeout": 3600},
    }
    celery_app.conf.update(base_config)

    celery_app.conf.imports = ("lesson_booking.tasks.outbox_tasks",)
    celery_app.conf.task_routes = {
        "outbox.*": {"queue": "outbox"},
        "bookings.*": {"queue": "outbox"},
    }
    celery_app.conf.beat_schedule = get_beat_schedule(settings)
    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task that logs failures and completions."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name, "task_args": str(args)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval: Any, task_id: str, args: Any, kwargs: Any) -> None:
        logger = logging.getLogger(__name__)
        logger.debug(
            f"Task {self.name}[{task_id}] completed successfully",
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_success(retval, task_id, args, kwargs)


# Register BaseTask as default task base for the app
celery_app.Task = cast(Type[Task], BaseTask)
