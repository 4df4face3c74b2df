from .availability import WeeklyWindow
from .booking import BookingSnapshot, CalendarEventResult, CreditBalance, Participant
from .outbound import (
    BookingCancellationNotice,
    BookingConfirmationNotice,
    BookingRescheduleNotice,
    CancelCalendarEvent,
    CreateCalendarEvent,
    OutboundPayload,
    UpdateCalendarEvent,
    parse_outbound_payload,
)

__all__ = [
    "BookingCancellationNotice",
    "BookingConfirmationNotice",
    "BookingRescheduleNotice",
    "BookingSnapshot",
    "CalendarEventResult",
    "CancelCalendarEvent",
    "CreateCalendarEvent",
    "CreditBalance",
    "OutboundPayload",
    "Participant",
    "UpdateCalendarEvent",
    "WeeklyWindow",
    "parse_outbound_payload",
]
