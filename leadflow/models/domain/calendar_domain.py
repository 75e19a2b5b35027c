# leadflow/models/domain/calendar_domain.py
"""
Calendar Domain Models
Read-only calendar events used as scheduling context next to the pipeline.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime

from leadflow.utils.email_address import normalize_email


@dataclass(slots=True)
class CalendarAttendee:
    email: str
    display_name: str | None = None
    response_status: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.email


class CalendarEvent:
    """Domain model for calendar events (timed or all-day)."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.title = data.get("summary", "") or "(No Title)"
        self.description = data.get("description", "")
        self.status = data.get("status", "confirmed")
        self.html_link = data.get("htmlLink", "")
        self.all_day = "date" in (data.get("start") or {})
        self.start_time = self._parse_datetime(data.get("start", {}))
        self.end_time = self._parse_datetime(data.get("end", {}))
        self.attendees = [
            CalendarAttendee(
                email=normalize_email(a.get("email")),
                display_name=a.get("displayName"),
                response_status=a.get("responseStatus"),
            )
            for a in data.get("attendees", []) or []
            if a.get("email")
        ]
        self.raw_data = data

    def _parse_datetime(self, dt_data: dict) -> datetime | None:
        """Parse datetime from Google Calendar format."""
        if not dt_data:
            return None

        # All-day events carry a date only
        if "date" in dt_data:
            day = date.fromisoformat(dt_data["date"])
            return datetime(day.year, day.month, day.day, tzinfo=UTC)

        if "dateTime" in dt_data:
            try:
                parsed = datetime.fromisoformat(dt_data["dateTime"].replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

        return None

    def duration_minutes(self) -> int:
        if not self.start_time or not self.end_time:
            return 0
        return int((self.end_time - self.start_time).total_seconds() / 60)

    def participant_labels(self) -> list[str]:
        return [attendee.label for attendee in self.attendees]

    def involves(self, email: str) -> bool:
        """Whether a contact's address is on the attendee list."""
        target = normalize_email(email)
        return any(attendee.email == target for attendee in self.attendees)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start": self.start_time.isoformat() if self.start_time else None,
            "end": self.end_time.isoformat() if self.end_time else None,
            "all_day": self.all_day,
            "status": self.status,
            "html_link": self.html_link,
            "participants": self.participant_labels(),
            "attendees": [
                {
                    "email": a.email,
                    "display_name": a.display_name,
                    "response_status": a.response_status,
                }
                for a in self.attendees
            ],
            "duration_minutes": self.duration_minutes(),
        }
