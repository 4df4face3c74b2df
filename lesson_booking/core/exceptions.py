# lesson_booking/core/exceptions.py
"""
Domain-specific exceptions for the lesson booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at an API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed; nothing has been changed."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested booking, user or topic does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails unexpectedly."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class ExternalServiceException(DomainException):
    """Raised when the external calendar or notification system fails."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        service: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"service": service, **(details or {})}
        if status_code is not None:
            merged["upstream_status"] = status_code
        super().__init__(message=message, code="EXTERNAL_SERVICE_ERROR", details=merged)
        self.service = service
        self.upstream_status = status_code


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class InsufficientNoticeException(ValidationException):
    """Raised when a booking starts sooner than the configured buffer allows."""

    def __init__(self, required_minutes: int, provided_minutes: float):
        super().__init__(
            message=f"Bookings must be made at least {required_minutes} minutes in advance",
            code="INSUFFICIENT_NOTICE",
            details={
                "required_minutes": required_minutes,
                "provided_minutes": round(provided_minutes, 2),
            },
        )


class CreditExhaustedException(BusinessRuleException):
    """Raised when a student has no active package with remaining lessons."""

    def __init__(self, student_id: str):
        super().__init__(
            message="No active package with remaining lessons",
            code="CREDIT_EXHAUSTED",
            details={"student_id": student_id},
        )


class InvalidStateException(BusinessRuleException):
    """Raised when a lifecycle transition is attempted from a terminal state."""

    def __init__(self, booking_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} booking in status {current_status}",
            code="INVALID_BOOKING_STATE",
            details={
                "booking_id": booking_id,
                "status": current_status,
                "action": action,
            },
        )


class AvailabilityOverlapException(ConflictException):
    """Raised when two weekly availability windows overlap on the same day."""

    def __init__(self, day_of_week: int, new_range: str, conflicting_range: str):
        super().__init__(
            message=(
                f"Overlapping window on day {day_of_week}: "
                f"{new_range} conflicts with {conflicting_range}"
            ),
            code="AVAILABILITY_OVERLAP",
            details={
                "day_of_week": day_of_week,
                "new_window": new_range,
                "conflicting_window": conflicting_range,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
