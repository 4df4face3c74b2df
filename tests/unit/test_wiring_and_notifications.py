# tests/unit/test_wiring_and_notifications.py
"""Tests for engine wiring and the recording notification provider."""

import json

import pytest

from lesson_booking.integrations.google_calendar_client import (
    FakeCalendarClient,
    GoogleCalendarClient,
)
from lesson_booking.schemas import BookingSnapshot, Participant
from lesson_booking.services import NotificationProvider, build_calendar_gateway
from lesson_booking.services.notification_provider import NotificationGateway
from tests.helpers import MONDAY, at, make_settings


@pytest.fixture
def snapshot():
    return BookingSnapshot(
        booking_id="b1",
        status="SCHEDULED",
        student=Participant(user_id="s1", full_name="Sam", email="sam@example.com"),
        teacher=Participant(user_id="t1", full_name="Tess", email="tess@example.com"),
        topic_id="topic1",
        topic_name="Conversation",
        start=at(MONDAY, 10),
        end=at(MONDAY, 11),
        duration_minutes=60,
    )


class TestCalendarGatewaySelection:
    def test_fake_by_default(self):
        assert isinstance(build_calendar_gateway(make_settings()), FakeCalendarClient)

    def test_google_when_configured(self):
        key = json.dumps({"client_email": "svc@example.com", "private_key": "unused"})
        settings = make_settings(calendar_provider="google", google_service_account_key=key)

        assert isinstance(build_calendar_gateway(settings), GoogleCalendarClient)

    def test_google_without_key_is_rejected(self):
        with pytest.raises(ValueError):
            make_settings(calendar_provider="google")

    def test_unvalidated_google_settings_without_key_are_rejected(self):
        settings = make_settings().model_copy(
            update={"calendar_provider": "google", "google_service_account_key": None}
        )

        with pytest.raises(ValueError, match="GOOGLE_SERVICE_ACCOUNT_KEY"):
            build_calendar_gateway(settings)


class TestNotificationProvider:
    def test_satisfies_gateway_protocol(self, db):
        assert isinstance(NotificationProvider(db), NotificationGateway)

    def test_repeat_send_is_recorded_once(self, db, snapshot):
        provider = NotificationProvider(db)

        first = provider.send("booking.confirmation", {"id": "b1"}, "booking.confirmation:b1")
        second = provider.send("booking.confirmation", {"id": "b1"}, "booking.confirmation:b1")

        assert first.attempt_count == 1
        assert second.attempt_count == 2
        assert second.idempotency_key == first.idempotency_key

    def test_booking_notices_use_distinct_keys(self, db, snapshot):
        provider = NotificationProvider(db)

        assert provider.send_booking_confirmation(snapshot) is True
        assert provider.send_booking_cancellation(snapshot, cancelled_by="s1") is True

        confirmation = provider.delivery_repository.get_by_idempotency_key(
            "booking.confirmation:b1"
        )
        cancellation = provider.delivery_repository.get_by_idempotency_key(
            "booking.cancellation:b1"
        )
        assert confirmation is not None
        assert cancellation.payload["cancelled_by"] == "s1"

    def test_missing_key_is_rejected(self, db):
        with pytest.raises(ValueError):
            NotificationProvider(db).send("booking.confirmation", {}, "")
