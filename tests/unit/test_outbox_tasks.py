# tests/unit/test_outbox_tasks.py
"""Tests for the Celery task bodies, run synchronously against the test session."""

from contextlib import contextmanager

import pytest

from lesson_booking.models import Booking
from lesson_booking.services import build_booking_engine
from lesson_booking.tasks import outbox_tasks
from lesson_booking.tasks.celery_app import create_celery_app, get_beat_schedule
from tests.helpers import MONDAY, at, make_settings


@pytest.fixture
def deferred_engine(db, calendar, clock):
    return build_booking_engine(
        db,
        settings=make_settings(outbox_dispatch_inline=False),
        calendar=calendar,
        clock=clock,
    )


@pytest.fixture
def worker(monkeypatch, db, deferred_engine):
    """Point the task module at the test session and engine."""

    @contextmanager
    def _scope():
        yield db
        db.commit()

    monkeypatch.setattr(outbox_tasks, "session_scope", _scope)
    monkeypatch.setattr(outbox_tasks, "build_booking_engine", lambda session: deferred_engine)
    scheduled = []
    monkeypatch.setattr(
        outbox_tasks.deliver_event, "apply_async", lambda args, **kwargs: scheduled.append(args)
    )
    return scheduled


@pytest.fixture
def booking(deferred_engine, student, make_package, teacher, topic):
    make_package(student)
    return deferred_engine.lifecycle.create_booking(
        student.id, teacher.id, topic.id, at(MONDAY, 10)
    )


class TestOutboxTasks:
    def test_dispatch_pending_schedules_one_task_per_row(self, worker, booking):
        assert outbox_tasks.dispatch_pending() == 2
        assert len(worker) == 2
        assert all(len(args) == 1 for args in worker)

    def test_deliver_event_runs_handler(self, worker, booking, db, calendar):
        outbox_tasks.dispatch_pending()

        outcomes = [outbox_tasks.deliver_event(args[0]) for args in worker]

        assert outcomes == ["sent", "sent"]
        assert len(calendar.calls_for("create_event")) == 1
        db.expire_all()
        assert db.get(Booking, booking.id).external_event_ref is not None

    def test_dispatch_pending_with_nothing_due(self, worker):
        assert outbox_tasks.dispatch_pending() == 0
        assert worker == []

    def test_reconcile_reports_enqueued_count(self, worker, booking):
        assert outbox_tasks.reconcile_calendar_events() == {"enqueued": 0}


class TestCeleryApp:
    def test_beat_schedule_uses_configured_intervals(self):
        settings = make_settings(
            outbox_dispatch_interval_seconds=15, calendar_reconcile_interval_seconds=900
        )
        schedule = get_beat_schedule(settings)

        assert schedule["dispatch-pending-outbox"]["task"] == "outbox.dispatch_pending"
        assert schedule["dispatch-pending-outbox"]["schedule"] == 15.0
        assert schedule["reconcile-calendar-events"]["schedule"] == 900.0

    def test_tasks_are_registered_and_routed(self):
        for name in (
            "outbox.dispatch_pending",
            "outbox.deliver_event",
            "bookings.reconcile_calendar_events",
        ):
            assert name in outbox_tasks.celery_app.tasks

        app = create_celery_app(make_settings())
        assert app.conf.task_routes["outbox.*"] == {"queue": "outbox"}
        assert "lesson_booking.tasks.outbox_tasks" in app.conf.imports
