# tests/unit/test_exceptions.py
"""Tests for the error taxonomy and its HTTP mapping."""

import pytest

from lesson_booking.core.exceptions import (
    AvailabilityOverlapException,
    BookingConflictException,
    CreditExhaustedException,
    ExternalServiceException,
    InsufficientNoticeException,
    InvalidStateException,
    NotFoundException,
    ServiceException,
    ValidationException,
)


class TestHttpMapping:
    @pytest.mark.parametrize(
        "exc,status_code",
        [
            (ValidationException("bad"), 400),
            (InsufficientNoticeException(60, 12.5), 400),
            (NotFoundException("missing"), 404),
            (BookingConflictException(), 409),
            (AvailabilityOverlapException(1, "09:00-10:00", "09:30-11:00"), 409),
            (CreditExhaustedException("s1"), 422),
            (InvalidStateException("b1", "CANCELLED", "cancel"), 422),
            (ExternalServiceException("down", service="google_calendar"), 502),
            (ServiceException("db"), 500),
        ],
    )
    def test_status_codes(self, exc, status_code):
        assert exc.to_http_exception().status_code == status_code

    def test_detail_carries_code_and_details(self):
        http_exc = InvalidStateException("b1", "CANCELLED", "cancel").to_http_exception()
        assert http_exc.detail["code"] == "INVALID_BOOKING_STATE"
        assert http_exc.detail["details"] == {
            "booking_id": "b1",
            "status": "CANCELLED",
            "action": "cancel",
        }


class TestDetails:
    def test_insufficient_notice_rounds_minutes(self):
        exc = InsufficientNoticeException(60, 29.99999)
        assert exc.details == {"required_minutes": 60, "provided_minutes": 30.0}

    def test_external_service_records_upstream_status(self):
        exc = ExternalServiceException("boom", service="google_calendar", status_code=503)
        assert exc.details["service"] == "google_calendar"
        assert exc.details["upstream_status"] == 503
        assert exc.upstream_status == 503

    def test_conflict_default_message(self):
        assert "conflicts" in BookingConflictException().message
