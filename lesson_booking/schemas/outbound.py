# lesson_booking/schemas/outbound.py
"""
Tagged payloads for outbound tasks.

Every row in ``event_outbox`` carries exactly one of these variants, selected
by ``kind``. Payloads are validated when enqueued and again when dispatched.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from .base import StrictModel
from .booking import BookingSnapshot


class CreateCalendarEvent(StrictModel):
    kind: Literal["calendar.create_event"] = "calendar.create_event"
    booking_id: str


class UpdateCalendarEvent(StrictModel):
    kind: Literal["calendar.update_event"] = "calendar.update_event"
    booking_id: str


class CancelCalendarEvent(StrictModel):
    kind: Literal["calendar.cancel_event"] = "calendar.cancel_event"
    booking_id: str
    event_ref: str


class BookingConfirmationNotice(StrictModel):
    kind: Literal["notification.booking_confirmation"] = "notification.booking_confirmation"
    booking_id: str


class BookingCancellationNotice(StrictModel):
    kind: Literal["notification.booking_cancellation"] = "notification.booking_cancellation"
    booking_id: str
    snapshot: BookingSnapshot
    cancelled_by: Optional[str] = None
    reason: Optional[str] = None


class BookingRescheduleNotice(StrictModel):
    kind: Literal["notification.booking_reschedule"] = "notification.booking_reschedule"
    booking_id: str
    previous: BookingSnapshot
    current: BookingSnapshot


OutboundPayload = Annotated[
    Union[
        CreateCalendarEvent,
        UpdateCalendarEvent,
        CancelCalendarEvent,
        BookingConfirmationNotice,
        BookingCancellationNotice,
        BookingRescheduleNotice,
    ],
    Field(discriminator="kind"),
]

outbound_payload_adapter: TypeAdapter[OutboundPayload] = TypeAdapter(OutboundPayload)


def parse_outbound_payload(data: object) -> OutboundPayload:
    """Validate a stored payload back into its tagged variant."""
    return outbound_payload_adapter.validate_python(data)
