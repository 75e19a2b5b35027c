"""
Calendar Reader backed by the Google Calendar REST API.
Read-only: lists events in a time range for scheduling context.
"""

from datetime import datetime

import httpx

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.calendar_domain import CalendarEvent
from leadflow.services.google_api import GoogleApiClient, GoogleApiError

logger = get_logger(__name__)

CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"


class CalendarReaderError(GoogleApiError):
    """Calendar call failed."""


class CalendarAuthError(CalendarReaderError):
    """Credential expired or lacks calendar scope."""


class GoogleCalendarReader(GoogleApiClient):
    service_name = "Calendar API"
    error_class = CalendarReaderError
    auth_error_class = CalendarAuthError
    reauth_error_code = "calendar_reauth_required"

    async def list_events(
        self,
        range_start: datetime,
        range_end: datetime,
        max_results: int = 50,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> list[CalendarEvent]:
        """
        List events overlapping [range_start, range_end), recurring events expanded.

        Raises:
            CalendarAuthError: credential rejected
            CalendarReaderError: any other failure
        """
        if range_end <= range_start:
            raise ValueError("range_end must be after range_start")

        params = {
            "timeMin": range_start.isoformat(),
            "timeMax": range_end.isoformat(),
            "maxResults": min(max_results, 2500),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
        headers = self._get_auth_headers()

        try:
            response = await self._request_with_retry("GET", url, headers=headers, params=params)
        except httpx.RequestError as e:
            logger.error("Calendar request failed", error=str(e))
            raise CalendarReaderError(f"Calendar request failed: {e}", error_code="network") from e

        data = self._handle_api_response(response, "list_events")
        events = [
            CalendarEvent(item) for item in data.get("items", []) if item.get("status") != "cancelled"
        ]

        logger.info("Calendar events listed", calendar_id=calendar_id, event_count=len(events))
        return events
