# tests/unit/test_outbound_dispatcher.py
"""Tests for outbox delivery: retries, backoff and terminal failures."""

from datetime import timedelta

import pytest

from lesson_booking.core.timezone_utils import ensure_utc, utc_now
from lesson_booking.models import EventOutbox, EventOutboxStatus
from lesson_booking.services import OutboundTaskDispatcher
from tests.helpers import make_settings


@pytest.fixture
def dispatcher(db):
    return OutboundTaskDispatcher(
        db, make_settings(outbox_max_attempts=3, outbox_backoff_seconds=[30, 120, 600])
    )


@pytest.fixture
def enqueue(db, dispatcher):
    def _enqueue(payload, key=None):
        row = dispatcher.outbox_repository.enqueue(
            event_type=payload["kind"],
            aggregate_id=payload["booking_id"],
            payload=payload,
            idempotency_key=key or f"{payload['kind']}:{payload['booking_id']}:v1",
        )
        db.commit()
        return row.id

    return _enqueue


def _row(db, event_id):
    db.expire_all()
    return db.get(EventOutbox, event_id)


CREATE = {"kind": "calendar.create_event", "booking_id": "01HBOOKING0000000000000001"}


class FlakyHandler:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")


class TestBackoff:
    @pytest.mark.parametrize("attempt,expected", [(1, 30), (2, 120), (3, 600), (9, 600)])
    def test_schedule_is_capped(self, dispatcher, attempt, expected):
        assert dispatcher.next_backoff(attempt) == expected


class TestDeliver:
    def test_success_marks_sent(self, db, dispatcher, enqueue):
        handler = FlakyHandler(failures=0)
        dispatcher.register("calendar.create_event", handler)
        event_id = enqueue(CREATE)

        assert dispatcher.deliver(event_id) == "sent"

        row = _row(db, event_id)
        assert row.status == EventOutboxStatus.SENT.value
        assert row.attempt_count == 1
        assert handler.calls == 1

    def test_failure_reschedules_with_backoff(self, db, dispatcher, enqueue):
        dispatcher.register("calendar.create_event", FlakyHandler(failures=1))
        event_id = enqueue(CREATE)
        before = utc_now()

        assert dispatcher.deliver(event_id) == "retry"

        row = _row(db, event_id)
        assert row.status == EventOutboxStatus.PENDING.value
        assert row.attempt_count == 1
        assert "RuntimeError: boom 1" in row.last_error
        assert ensure_utc(row.next_attempt_at) >= before + timedelta(seconds=30)
        assert event_id not in dispatcher.pending_ids()

    def test_exhausted_attempts_mark_failed(self, db, dispatcher, enqueue):
        handler = FlakyHandler(failures=10)
        dispatcher.register("calendar.create_event", handler)
        event_id = enqueue(CREATE)

        outcomes = [dispatcher.deliver(event_id) for _ in range(4)]

        assert outcomes == ["retry", "retry", "failed", "skipped"]
        assert handler.calls == 3
        assert _row(db, event_id).status == EventOutboxStatus.FAILED.value

    def test_recovers_after_transient_failures(self, db, dispatcher, enqueue):
        dispatcher.register("calendar.create_event", FlakyHandler(failures=2))
        event_id = enqueue(CREATE)

        assert [dispatcher.deliver(event_id) for _ in range(3)] == ["retry", "retry", "sent"]
        assert _row(db, event_id).attempt_count == 3

    def test_malformed_payload_fails_immediately(self, db, dispatcher, enqueue):
        dispatcher.register("calendar.create_event", FlakyHandler(failures=0))
        event_id = enqueue({**CREATE, "unexpected": True})

        assert dispatcher.deliver(event_id) == "failed"
        assert "ValidationError" in _row(db, event_id).last_error

    def test_unregistered_kind_fails_immediately(self, db, dispatcher, enqueue):
        event_id = enqueue(CREATE)

        assert dispatcher.deliver(event_id) == "failed"
        assert "UnknownTaskKindError" in _row(db, event_id).last_error

    def test_missing_row_skipped(self, dispatcher):
        assert dispatcher.deliver("01HMISSING0000000000000000") == "skipped"


class TestEnqueue:
    def test_same_idempotency_key_is_deduplicated(self, db, enqueue):
        first = enqueue(CREATE, key="calendar.create_event:b1:v1")
        second = enqueue(CREATE, key="calendar.create_event:b1:v1")

        assert first == second
        assert db.query(EventOutbox).count() == 1


class TestDispatchPending:
    def test_tallies_outcomes(self, dispatcher, enqueue):
        dispatcher.register("calendar.create_event", FlakyHandler(failures=1))
        enqueue(CREATE, key="a")
        enqueue(CREATE, key="b")

        assert dispatcher.dispatch_pending() == {"retry": 1, "sent": 1}
        assert dispatcher.dispatch_pending() == {}
