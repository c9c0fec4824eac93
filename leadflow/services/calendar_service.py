"""Google Calendar read client."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TypedDict

import httpx

from leadflow.core.config import settings
from leadflow.db.enums import Provider
from leadflow.services.provider_client import MalformedResponseError, request_json
from leadflow.utils.datetime_parsing import parse_calendar_time, parse_iso_datetime

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
CALENDAR_PAGE_SIZE = 250


# =============================================================================
# Types
# =============================================================================

class CalendarEventData(TypedDict):
    """A calendar event parsed from the provider."""
    id: str
    summary: str
    description: str
    location: str
    start: datetime | None
    end: datetime | None
    is_all_day: bool
    status: str | None
    attendee_count: int
    html_link: str
    updated: datetime | None


class CalendarEventPage(TypedDict):
    events: list[CalendarEventData]
    next_page_token: str | None


def parse_google_event(item: dict) -> CalendarEventData:
    if not isinstance(item, dict) or not item.get("id"):
        raise MalformedResponseError("Calendar event missing id", provider=Provider.GOOGLE_CALENDAR.value)
    start, is_all_day = parse_calendar_time(item.get("start"))
    end, _ = parse_calendar_time(item.get("end"))
    return CalendarEventData(
        id=str(item["id"]),
        summary=item.get("summary") or "(No title)",
        description=item.get("description") or "",
        location=item.get("location") or "",
        start=start,
        end=end,
        is_all_day=is_all_day,
        status=item.get("status"),
        attendee_count=len(item.get("attendees") or []),
        html_link=item.get("htmlLink") or "",
        updated=parse_iso_datetime(item.get("updated")),
    )


class GoogleCalendarClient:
    """Lists events in a time window, expanding recurring events."""

    provider = Provider.GOOGLE_CALENDAR.value

    def __init__(
        self,
        access_token: str,
        *,
        calendar_id: str = "primary",
        http_client: httpx.Client | None = None,
    ):
        self.access_token = access_token
        self.calendar_id = calendar_id
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        page_token: str | None = None,
    ) -> CalendarEventPage:
        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",  # Expand recurring events
            "orderBy": "startTime",
            "maxResults": str(CALENDAR_PAGE_SIZE),
        }
        if page_token:
            params["pageToken"] = page_token
        payload = request_json(
            self._client,
            "GET",
            f"{GOOGLE_CALENDAR_API_BASE}/calendars/{self.calendar_id}/events",
            provider=self.provider,
            access_token=self.access_token,
            params=params,
        )
        return CalendarEventPage(
            events=[parse_google_event(item) for item in payload.get("items") or []],
            next_page_token=payload.get("nextPageToken"),
        )
