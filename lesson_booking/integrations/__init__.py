from .calendar_gateway import CalendarGateway
from .google_calendar_client import FakeCalendarClient, GoogleCalendarClient

__all__ = ["CalendarGateway", "FakeCalendarClient", "GoogleCalendarClient"]
