"""Google Calendar meeting scheduling for support cards."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from ..config import Settings, get_settings
from ..errors import ExternalServiceError, ValidationError
from ..schemas import MeetingRequest
from ..security.secrets import MissingSecretError, resolve_secret
from ..utils import generate_id

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"


@dataclass(frozen=True)
class Meeting:
    id: str
    title: str
    start: str
    end: str
    meet_link: str | None
    html_link: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


_calendar_client: httpx.Client | None = None


def set_calendar_client(client: httpx.Client | None) -> None:
    """Override the shared calendar HTTP client (used by tests)."""

    global _calendar_client
    _calendar_client = client


def _get_calendar_client() -> httpx.Client:
    global _calendar_client
    if _calendar_client is None:
        _calendar_client = httpx.Client(timeout=20.0)
    return _calendar_client


def _meeting_window(request: MeetingRequest, tz: ZoneInfo, default_minutes: int) -> tuple[datetime, datetime]:
    try:
        start = datetime.fromisoformat(f"{request.date}T{request.time}")
    except ValueError as exc:
        raise ValidationError("Meeting date/time must be ISO formatted (YYYY-MM-DD and HH:MM)") from exc
    duration = request.duration or default_minutes
    if duration <= 0:
        raise ValidationError("Meeting duration must be positive")
    start = start.replace(tzinfo=tz) if start.tzinfo is None else start.astimezone(tz)
    return start, start + timedelta(minutes=duration)


def _event_description(request: MeetingRequest) -> str:
    lines = []
    if request.description:
        lines.append(request.description)
    if request.card_id:
        lines.append(f"Support card: {request.card_id}")
    if request.attendees:
        lines.append("Attendees: " + ", ".join(request.attendees))
    return "\n\n".join(lines)


class CalendarService:
    def __init__(self, settings: Settings | None = None, *, client: httpx.Client | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    def schedule_meeting(self, request: MeetingRequest) -> Meeting:
        """Create a calendar event with a Meet conference and return its summary."""

        if not request.title.strip():
            raise ValidationError("Meeting title is required")
        try:
            tz = ZoneInfo(self._settings.calendar_timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValidationError(f"Unknown calendar timezone {self._settings.calendar_timezone}") from exc
        start, end = _meeting_window(request, tz, self._settings.meeting_duration_minutes)

        try:
            token = resolve_secret(self._settings.calendar_access_token, "CALENDAR_ACCESS_TOKEN")
        except MissingSecretError as exc:
            raise ExternalServiceError("Calendar access is not configured") from exc

        body: dict[str, Any] = {
            "summary": request.title,
            "description": _event_description(request),
            "location": "Google Meet",
            "start": {"dateTime": start.isoformat(), "timeZone": self._settings.calendar_timezone},
            "end": {"dateTime": end.isoformat(), "timeZone": self._settings.calendar_timezone},
            "conferenceData": {
                "createRequest": {
                    "requestId": generate_id("meet_"),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
        }
        if request.attendees:
            body["attendees"] = [{"email": email} for email in request.attendees]

        client = self._client or _get_calendar_client()
        url = GOOGLE_CALENDAR_EVENTS_URL.format(calendar_id=self._settings.calendar_id)
        try:
            response = client.post(
                url,
                headers={"Authorization": f"Bearer {token}"},
                params={"conferenceDataVersion": 1, "sendUpdates": "all" if request.attendees else "none"},
                json=body,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Calendar event creation failed: %s", exc)
            raise ExternalServiceError("Calendar event creation failed") from exc
        except ValueError as exc:
            raise ExternalServiceError("Calendar returned invalid JSON") from exc

        meet_link = data.get("hangoutLink")
        if not meet_link:
            for entry in (data.get("conferenceData") or {}).get("entryPoints", []) or []:
                if entry.get("entryPointType") == "video":
                    meet_link = entry.get("uri")
                    break

        meeting = Meeting(
            id=str(data.get("id", "")),
            title=data.get("summary") or request.title,
            start=start.isoformat(),
            end=end.isoformat(),
            meet_link=meet_link,
            html_link=data.get("htmlLink"),
        )
        logger.info("Scheduled meeting %s for card %s", meeting.id, request.card_id)
        return meeting


__all__ = ["CalendarService", "GOOGLE_CALENDAR_EVENTS_URL", "Meeting", "set_calendar_client"]
