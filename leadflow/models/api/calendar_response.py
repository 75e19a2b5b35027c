# leadflow/models/api/calendar_response.py
"""
Calendar API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from leadflow.models.domain.calendar_domain import CalendarEvent


class CalendarEventResponse(BaseModel):
    """Response model for calendar events."""

    id: str = Field(..., description="Event ID")
    title: str = Field(..., description="Event title")
    description: str = Field(default="", description="Event description")
    start: datetime | None = Field(None, description="Event start time")
    end: datetime | None = Field(None, description="Event end time")
    all_day: bool = Field(..., description="Is this an all-day event")
    status: str = Field(..., description="Event status")
    html_link: str = Field(default="", description="Link to the event in Google Calendar")
    participants: list[str] = Field(default_factory=list, description="Attendee labels")
    duration_minutes: int = Field(default=0, description="Event length in minutes")

    @classmethod
    def from_domain(cls, event: CalendarEvent) -> "CalendarEventResponse":
        return cls(
            id=event.id or "",
            title=event.title,
            description=event.description or "",
            start=event.start_time,
            end=event.end_time,
            all_day=event.all_day,
            status=event.status,
            html_link=event.html_link,
            participants=event.participant_labels(),
            duration_minutes=event.duration_minutes(),
        )


class EventsListResponse(BaseModel):
    """Response for a time-range event listing."""

    events: list[CalendarEventResponse] = Field(..., description="Events ordered by start time")
    total_count: int = Field(..., description="Number of events returned")
    range_start: datetime = Field(..., description="Start of the queried range")
    range_end: datetime = Field(..., description="End of the queried range")
