"""
Calendar API Routes
Read-only event listing used as scheduling context next to the pipeline.
"""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from leadflow.auth.verify import auth_dependency
from leadflow.dependencies import get_calendar_reader
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.calendar_response import CalendarEventResponse, EventsListResponse
from leadflow.routes.errors import google_error_to_http, require_user_id
from leadflow.services.calendar.google_client import (
    CalendarAuthError,
    CalendarReaderError,
    GoogleCalendarReader,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


@router.get("/events", response_model=EventsListResponse)
async def list_events(
    claims: dict = Depends(auth_dependency),
    reader: GoogleCalendarReader = Depends(get_calendar_reader),
    start: datetime | None = Query(default=None, description="Range start (default: now)"),
    end: datetime | None = Query(default=None, description="Range end (default: start + days)"),
    days: int = Query(default=7, ge=1, le=90, description="Range length when end is omitted"),
    max_results: int = Query(default=50, ge=1, le=250, description="Maximum events to return"),
):
    """Events overlapping [start, end), recurring events expanded."""
    user_id = require_user_id(claims)
    range_start = _as_utc(start) if start else datetime.now(UTC)
    range_end = _as_utc(end) if end else range_start + timedelta(days=days)

    try:
        events = await reader.list_events(range_start, range_end, max_results=max_results)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except CalendarReaderError as e:
        logger.error("Error listing calendar events", user_id=user_id, error=str(e))
        raise google_error_to_http(e, CalendarAuthError) from e

    return EventsListResponse(
        events=[CalendarEventResponse.from_domain(event) for event in events],
        total_count=len(events),
        range_start=range_start,
        range_end=range_end,
    )
