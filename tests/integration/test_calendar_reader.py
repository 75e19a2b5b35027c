import re
from datetime import UTC, datetime, timedelta

import pytest

from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.services import google_api
from leadflow.services.calendar.google_client import (
    CalendarAuthError,
    CalendarReaderError,
    GoogleCalendarReader,
)

EVENTS_URL = re.compile(
    re.escape("https://www.googleapis.com/calendar/v3/calendars/primary/events") + r"\?.*"
)
START = datetime(2024, 6, 3, 0, 0, tzinfo=UTC)
END = START + timedelta(days=7)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(google_api, "BACKOFF_FACTOR", 0)


@pytest.fixture
def credential():
    return OAuthCredential(
        access_token="access-token",
        scope="https://www.googleapis.com/auth/calendar.readonly",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


@pytest.mark.asyncio
async def test_list_events_success(httpx_mock, credential):
    httpx_mock.add_response(
        method="GET",
        url=EVENTS_URL,
        json={
            "items": [
                {
                    "id": "e1",
                    "summary": "Demo with Acme",
                    "start": {"dateTime": "2024-06-04T15:00:00Z"},
                    "end": {"dateTime": "2024-06-04T15:30:00Z"},
                    "attendees": [
                        {"email": "Bea@Y.com", "displayName": "Bea"},
                        {"email": "ops@acme.com"},
                    ],
                },
                {
                    "id": "e2",
                    "start": {"date": "2024-06-05"},
                    "end": {"date": "2024-06-06"},
                },
                {"id": "e3", "status": "cancelled", "start": {"date": "2024-06-05"}},
            ]
        },
    )

    async with GoogleCalendarReader(credential) as reader:
        events = await reader.list_events(START, END, max_results=10)

    assert [e.id for e in events] == ["e1", "e2"]
    demo, offsite = events
    assert demo.duration_minutes() == 30
    assert demo.participant_labels() == ["Bea", "ops@acme.com"]
    assert demo.involves("bea@y.com")
    assert offsite.all_day is True
    assert offsite.title == "(No Title)"
    assert offsite.duration_minutes() == 24 * 60

    params = httpx_mock.get_requests()[0].url.params
    assert params["singleEvents"] == "true"
    assert params["orderBy"] == "startTime"
    assert params["maxResults"] == "10"
    assert datetime.fromisoformat(params["timeMin"]) == START


@pytest.mark.asyncio
async def test_list_events_auth_error(httpx_mock, credential):
    httpx_mock.add_response(
        method="GET",
        url=EVENTS_URL,
        status_code=403,
        json={"error": {"code": 403, "message": "Insufficient Permission"}},
    )

    async with GoogleCalendarReader(credential) as reader:
        with pytest.raises(CalendarAuthError) as exc_info:
            await reader.list_events(START, END)

    assert exc_info.value.error_code == "calendar_reauth_required"


@pytest.mark.asyncio
async def test_list_events_not_found(httpx_mock, credential):
    httpx_mock.add_response(
        method="GET",
        url=EVENTS_URL,
        status_code=404,
        json={"error": {"code": 404, "message": "Not Found"}},
    )

    async with GoogleCalendarReader(credential) as reader:
        with pytest.raises(CalendarReaderError) as exc_info:
            await reader.list_events(START, END)

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_list_events_rejects_empty_range(credential):
    async with GoogleCalendarReader(credential) as reader:
        with pytest.raises(ValueError):
            await reader.list_events(END, START)
