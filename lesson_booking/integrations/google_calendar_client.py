# lesson_booking/integrations/google_calendar_client.py
"""Google Calendar Integration Client.

Reads a teacher's busy time through the freeBusy API and manages the meeting
event for each booking (insert with a Google Meet conference, patch on
reschedule, delete on cancel). Requests go through the Calendar v3 discovery
client, authorised with service account credentials from google-auth.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import re
import time
from typing import Any, List, cast

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
import httplib2
from pydantic import SecretStr

from ..core.exceptions import ExternalServiceException
from ..domain.intervals import TimeInterval
from ..schemas.booking import BookingSnapshot, CalendarEventResult

logger = logging.getLogger(__name__)

SERVICE_NAME = "google_calendar"
CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)

# Event ids must be 5-1024 chars of base32hex (a-v, 0-9)
_EVENT_ID_INVALID = re.compile(r"[^a-v0-9]")


def event_id_for(booking_id: str, prefix: str = "lessonbooking") -> str:
    """Deterministic calendar event id for a booking."""
    return _EVENT_ID_INVALID.sub("", prefix.lower()) + booking_id.encode("utf-8").hex()


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _meeting_link(event: dict[str, Any]) -> str | None:
    for entry in (event.get("conferenceData") or {}).get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return cast(str, entry["uri"])
    return cast("str | None", event.get("hangoutLink"))


def build_event_description(snapshot: BookingSnapshot) -> str:
    lines = [
        "Live class",
        "",
        f"Topic: {snapshot.topic_name}",
        f"Level: {snapshot.topic_level}",
        f"Student: {snapshot.student.full_name} ({snapshot.student.email})",
        f"Teacher: {snapshot.teacher.full_name} ({snapshot.teacher.email})",
        f"Duration: {snapshot.duration_minutes} minutes",
        "",
        "Join the meeting link 5 minutes before the scheduled time.",
    ]
    return "\n".join(lines)


class GoogleCalendarClient:
    """Google Calendar v3 client for one service account."""

    def __init__(
        self,
        *,
        service_account_key: str | SecretStr,
        calendar_id: str = "primary",
        delegated_user: str | None = None,
        event_timezone: str = "UTC",
        event_prefix: str = "lessonbooking",
        timeout: float = 10.0,
    ) -> None:
        raw_key = (
            service_account_key.get_secret_value()
            if isinstance(service_account_key, SecretStr)
            else service_account_key
        )
        try:
            self._account_info: dict[str, Any] = json.loads(raw_key)
        except ValueError as exc:
            raise ValueError("Service account key is not valid JSON") from exc
        for field in ("client_email", "private_key"):
            if not self._account_info.get(field):
                raise ValueError(f"Service account key is missing '{field}'")

        self._calendar_id = calendar_id
        self._delegated_user = delegated_user
        self._event_timezone = event_timezone
        self._event_prefix = event_prefix
        self._timeout = timeout
        self._service: Any = None

    # ── Auth ────────────────────────────────────────────────────────────

    def _credentials(self) -> service_account.Credentials:
        credentials = service_account.Credentials.from_service_account_info(
            self._account_info, scopes=list(CALENDAR_SCOPES)
        )
        if self._delegated_user:
            credentials = credentials.with_subject(self._delegated_user)
        return credentials

    def _get_service(self) -> Any:
        """Calendar v3 resource, built on first use and reused afterwards."""
        if self._service is None:
            try:
                transport = httplib2.Http(timeout=self._timeout)
                http = AuthorizedHttp(self._credentials(), http=transport)
                self._service = build("calendar", "v3", http=http, cache_discovery=False)
            except (GoogleAuthError, ValueError) as exc:
                logger.error("Google Calendar credentials rejected: %s", exc)
                raise ExternalServiceException(
                    "Calendar authentication failed", service=SERVICE_NAME
                ) from exc
        return self._service

    # ── Transport ───────────────────────────────────────────────────────

    def _execute(self, request: Any, action: str) -> Any:
        """Run an API request, turning client failures into ExternalServiceException."""
        try:
            return request.execute()
        except HttpError as exc:
            status = exc.resp.status
            logger.warning("Google Calendar error %s during %s: %s", status, action, exc)
            raise ExternalServiceException(
                getattr(exc, "reason", None) or "Calendar API error",
                service=SERVICE_NAME,
                status_code=status,
                details={"action": action},
            ) from exc
        except GoogleAuthError as exc:
            logger.error("Google Calendar authentication failed during %s: %s", action, exc)
            raise ExternalServiceException(
                "Calendar authentication failed", service=SERVICE_NAME
            ) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            logger.error("Google Calendar unreachable during %s: %s", action, exc)
            raise ExternalServiceException(
                f"Calendar API unreachable: {exc}", service=SERVICE_NAME
            ) from exc

    # ── High-level API methods ──────────────────────────────────────────

    def list_busy(self, teacher_ref: str, start: datetime, end: datetime) -> List[TimeInterval]:
        """Busy blocks on the teacher's calendar within [start, end)."""
        body = {
            "timeMin": start.astimezone(timezone.utc).isoformat(),
            "timeMax": end.astimezone(timezone.utc).isoformat(),
            "items": [{"id": teacher_ref}],
        }
        payload = self._execute(self._get_service().freebusy().query(body=body), "freeBusy")
        calendar = (payload.get("calendars") or {}).get(teacher_ref) or {}
        if calendar.get("errors"):
            raise ExternalServiceException(
                "Busy time unavailable for calendar",
                service=SERVICE_NAME,
                details={"calendar": teacher_ref, "errors": calendar["errors"]},
            )
        return [
            TimeInterval(_parse_instant(item["start"]), _parse_instant(item["end"]))
            for item in calendar.get("busy") or []
        ]

    def _event_body(self, snapshot: BookingSnapshot) -> dict[str, Any]:
        tz_name = snapshot.teacher.timezone or self._event_timezone
        return {
            "summary": f"Live Class: {snapshot.topic_name} ({snapshot.topic_level})",
            "description": build_event_description(snapshot),
            "start": {"dateTime": snapshot.start.isoformat(), "timeZone": tz_name},
            "end": {"dateTime": snapshot.end.isoformat(), "timeZone": tz_name},
            "attendees": [
                {
                    "email": snapshot.student.email,
                    "displayName": snapshot.student.full_name,
                    "responseStatus": "needsAction",
                },
                {
                    "email": snapshot.teacher.email,
                    "displayName": snapshot.teacher.full_name,
                    "responseStatus": "accepted",
                },
            ],
        }

    def create_event(self, snapshot: BookingSnapshot) -> CalendarEventResult:
        """Insert the booking's event with a Meet conference.

        The event id is derived from the booking id, so a retried insert that
        hits 409 returns the event created by the earlier attempt.
        """
        event_id = event_id_for(snapshot.booking_id, self._event_prefix)
        body = {
            "id": event_id,
            **self._event_body(snapshot),
            "conferenceData": {
                "createRequest": {
                    "requestId": f"{event_id}-{int(time.time())}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 60},
                    {"method": "email", "minutes": 15},
                    {"method": "popup", "minutes": 10},
                ],
            },
            "visibility": "private",
            "guestsCanModify": False,
            "guestsCanInviteOthers": False,
            "guestsCanSeeOtherGuests": True,
        }
        events = self._get_service().events()
        request = events.insert(
            calendarId=self._calendar_id,
            body=body,
            conferenceDataVersion=1,
            sendUpdates="all",
        )
        try:
            event = self._execute(request, "insert event")
        except ExternalServiceException as exc:
            if exc.upstream_status != 409:
                raise
            logger.info("Calendar event %s already exists, reusing it", event_id)
            event = self._execute(
                events.get(calendarId=self._calendar_id, eventId=event_id), "get event"
            )
        return CalendarEventResult(event_ref=event["id"], meeting_link=_meeting_link(event))

    def update_event(self, event_ref: str, snapshot: BookingSnapshot) -> CalendarEventResult:
        request = self._get_service().events().patch(
            calendarId=self._calendar_id,
            eventId=event_ref,
            body=self._event_body(snapshot),
            sendUpdates="all",
        )
        event = self._execute(request, "patch event") or {}
        return CalendarEventResult(
            event_ref=event.get("id") or event_ref,
            meeting_link=_meeting_link(event) or snapshot.external_meeting_link,
        )

    def cancel_event(self, event_ref: str) -> None:
        """Delete the event; an event that is already gone counts as cancelled."""
        request = self._get_service().events().delete(
            calendarId=self._calendar_id, eventId=event_ref, sendUpdates="all"
        )
        try:
            self._execute(request, "delete event")
        except ExternalServiceException as exc:
            if exc.upstream_status not in (404, 410):
                raise
            logger.info("Calendar event %s already removed", event_ref)


class FakeCalendarClient:
    """In-memory stand-in for testing/non-production environments."""

    def __init__(self, **kwargs: Any) -> None:
        self.calls: list[dict[str, Any]] = []
        self.events: dict[str, BookingSnapshot] = {}
        self._busy: dict[str, list[TimeInterval]] = {}
        self._errors: dict[str, Exception] = {}

    def set_busy(self, teacher_ref: str, intervals: List[TimeInterval]) -> None:
        self._busy[teacher_ref] = list(intervals)

    def set_error(self, method: str, error: Exception) -> None:
        """Inject a method-specific error for deterministic failure testing."""
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def list_busy(self, teacher_ref: str, start: datetime, end: datetime) -> List[TimeInterval]:
        self.calls.append({"method": "list_busy", "teacher_ref": teacher_ref})
        self._raise_if_injected("list_busy")
        window = TimeInterval(start, end)
        return [block for block in self._busy.get(teacher_ref, []) if block.overlaps(window)]

    def create_event(self, snapshot: BookingSnapshot) -> CalendarEventResult:
        self.calls.append({"method": "create_event", "booking_id": snapshot.booking_id})
        self._raise_if_injected("create_event")
        event_ref = f"fake_event_{snapshot.booking_id.lower()}"
        self.events[event_ref] = snapshot
        return CalendarEventResult(
            event_ref=event_ref,
            meeting_link=f"https://meet.example.test/{snapshot.booking_id.lower()}",
        )

    def update_event(self, event_ref: str, snapshot: BookingSnapshot) -> CalendarEventResult:
        self.calls.append(
            {"method": "update_event", "event_ref": event_ref, "booking_id": snapshot.booking_id}
        )
        self._raise_if_injected("update_event")
        self.events[event_ref] = snapshot
        return CalendarEventResult(event_ref=event_ref, meeting_link=snapshot.external_meeting_link)

    def cancel_event(self, event_ref: str) -> None:
        self.calls.append({"method": "cancel_event", "event_ref": event_ref})
        self._raise_if_injected("cancel_event")
        self.events.pop(event_ref, None)

    def calls_for(self, method: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["method"] == method]
