import asyncio
import base64
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from leadflow.dependencies import (
    get_calendar_reader,
    get_credential_store,
    get_ingestion_service,
    get_mailbox_reader,
    get_reader_factory,
)
from leadflow.main import app
from leadflow.models.domain.calendar_domain import CalendarEvent
from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.models.domain.mailbox_domain import EmailThread, HistoryPage, ThreadPage
from leadflow.repositories.credential_repository import InMemoryCredentialRepository
from leadflow.repositories.sync_state_repository import InMemorySyncStateRepository
from leadflow.services.calendar.google_client import CalendarAuthError
from leadflow.services.ingestion_service import MailboxIngestionService, MessageAssociationService
from leadflow.services.mailbox.google_client import MailboxAuthError, MailboxReaderError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _envelope(email_address: str, history_id: str) -> dict:
    data = base64.b64encode(
        json.dumps({"emailAddress": email_address, "historyId": history_id}).encode()
    ).decode()
    return {"message": {"data": data, "messageId": "1"}, "subscription": "projects/p/subscriptions/s"}


@pytest.fixture
def mailbox_reader():
    return AsyncMock()


@pytest.fixture
def credentials():
    return InMemoryCredentialRepository()


@pytest.fixture
def client(apply_auth_override, mailbox_reader, credentials):
    apply_auth_override(app)
    app.dependency_overrides[get_mailbox_reader] = lambda: mailbox_reader
    app.dependency_overrides[get_credential_store] = lambda: credentials
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_list_threads(client, mailbox_reader):
    mailbox_reader.list_threads.return_value = ThreadPage(
        threads=[
            EmailThread(
                id="t1", subject="Quote", from_name="Ann", email="a@x.com", date=NOW, snippet="Hi"
            )
        ],
        next_page_token="next",
        dropped_thread_ids=["t2"],
    )

    response = client.get("/mailbox/threads", params={"page_size": 10, "q": "in:inbox"})

    assert response.status_code == 200
    data = response.json()
    assert data["threads"][0]["from"] == "Ann"
    assert data["threads"][0]["email"] == "a@x.com"
    assert data["dropped_thread_ids"] == ["t2"]
    mailbox_reader.list_threads.assert_awaited_once_with(
        page_size=10, page_token=None, query_filter="in:inbox"
    )


def test_list_threads_auth_failure_asks_for_reconnect(client, mailbox_reader):
    mailbox_reader.list_threads.side_effect = MailboxAuthError(
        "Gmail API authorization failed. Please reconnect.",
        error_code="mailbox_reauth_required",
        status_code=401,
    )

    response = client.get("/mailbox/threads")

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "mailbox_reauth_required"


def test_thread_body_not_found(client, mailbox_reader):
    mailbox_reader.get_thread_body.side_effect = MailboxReaderError(
        "missing", error_code="not_found", status_code=404
    )

    assert client.get("/mailbox/threads/t9/body").status_code == 404


def test_send_upstream_failure_is_502(client, mailbox_reader):
    mailbox_reader.send_message.side_effect = MailboxReaderError("boom", status_code=500)

    response = client.post("/mailbox/send", json={"to": "b@y.com", "subject": "Hi", "body": "Hello"})

    assert response.status_code == 502


def test_missing_google_token_is_401(apply_auth_override):
    apply_auth_override(app)
    try:
        response = TestClient(app).get("/mailbox/threads")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "mailbox_reauth_required"


def test_store_credential_normalizes_address(client, credentials):
    response = client.post(
        "/mailbox/credentials",
        json={"mailbox_address": " Me@X.com", "access_token": "token", "refresh_token": "refresh"},
    )

    assert response.json() == {"mailbox_address": "me@x.com", "stored": True}
    stored = asyncio.run(credentials.get("user-123"))
    assert stored.mailbox_address == "me@x.com"
    assert stored.credential.refresh_token == "refresh"


def test_watch_requires_topic(client):
    with patch("leadflow.routes.mailbox.settings.GMAIL_PUSH_TOPIC", None):
        response = client.post("/mailbox/watch", json={})

    assert response.status_code == 400


def test_watch_uses_configured_topic(client, mailbox_reader):
    mailbox_reader.watch.return_value = {"historyId": 123, "expiration": "1717300000000"}

    with patch("leadflow.routes.mailbox.settings.GMAIL_PUSH_TOPIC", "projects/p/topics/gmail"):
        response = client.post("/mailbox/watch", json={})

    assert response.json() == {"history_id": "123", "expiration": "1717300000000"}
    mailbox_reader.watch.assert_awaited_once_with("projects/p/topics/gmail", ["INBOX"])


@pytest.fixture
def push_client(contact_store, triage_store, credentials):
    sync_state = InMemorySyncStateRepository()
    ingestion = MailboxIngestionService(
        MessageAssociationService(contact_store, triage_store), sync_state, credentials
    )
    reader = AsyncMock()
    reader.list_history.return_value = HistoryPage(message_ids=[], history_id="140")

    async def factory(stored):
        return reader

    app.dependency_overrides[get_ingestion_service] = lambda: ingestion
    app.dependency_overrides[get_reader_factory] = lambda: factory
    yield TestClient(app), sync_state
    app.dependency_overrides.clear()


def test_push_runs_incremental_sync(push_client, credentials):
    client, sync_state = push_client
    asyncio.run(credentials.save("user-123", "me@x.com", OAuthCredential(access_token="token")))
    asyncio.run(sync_state.set_history_id("user-123", "100"))

    with patch("leadflow.routes.mailbox.settings.GMAIL_PUSH_TOKEN", None):
        response = client.post("/mailbox/push", json=_envelope("me@x.com", "150"))

    assert response.status_code == 200
    assert response.json()["handled"] is True
    assert response.json()["history_id"] == "150"


def test_push_for_unknown_mailbox_is_acknowledged(push_client):
    client, _ = push_client

    with patch("leadflow.routes.mailbox.settings.GMAIL_PUSH_TOKEN", None):
        response = client.post("/mailbox/push", json=_envelope("nobody@x.com", "5"))

    assert response.status_code == 200
    assert response.json()["handled"] is False


def test_push_with_bad_payload_is_acknowledged(push_client):
    client, _ = push_client

    with patch("leadflow.routes.mailbox.settings.GMAIL_PUSH_TOKEN", None):
        response = client.post("/mailbox/push", json={"message": {"data": "%%%"}})

    assert response.status_code == 200
    assert response.json()["handled"] is False


def test_push_token_is_enforced(push_client):
    client, _ = push_client

    with patch("leadflow.routes.mailbox.settings.GMAIL_PUSH_TOKEN", "secret"):
        rejected = client.post("/mailbox/push?token=wrong", json=_envelope("me@x.com", "5"))
        accepted = client.post("/mailbox/push?token=secret", json=_envelope("nobody@x.com", "5"))

    assert rejected.status_code == 403
    assert accepted.status_code == 200


def test_calendar_events(apply_auth_override):
    reader = AsyncMock()
    reader.list_events.return_value = [
        CalendarEvent(
            {
                "id": "e1",
                "summary": "Demo",
                "start": {"dateTime": "2024-06-04T15:00:00Z"},
                "end": {"dateTime": "2024-06-04T16:00:00Z"},
                "attendees": [{"email": "b@y.com", "displayName": "Bea"}],
            }
        )
    ]
    apply_auth_override(app)
    app.dependency_overrides[get_calendar_reader] = lambda: reader
    try:
        response = TestClient(app).get(
            "/calendar/events", params={"start": "2024-06-03T00:00:00", "days": 7}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["total_count"] == 1
    assert data["events"][0]["duration_minutes"] == 60
    assert data["events"][0]["participants"] == ["Bea"]
    range_start, range_end = reader.list_events.await_args.args
    assert range_start == datetime(2024, 6, 3, tzinfo=UTC)
    assert (range_end - range_start).days == 7


def test_calendar_auth_failure(apply_auth_override):
    reader = AsyncMock()
    reader.list_events.side_effect = CalendarAuthError(
        "Calendar API authorization failed. Please reconnect.",
        error_code="calendar_reauth_required",
        status_code=403,
    )
    apply_auth_override(app)
    app.dependency_overrides[get_calendar_reader] = lambda: reader
    try:
        response = TestClient(app).get("/calendar/events")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "calendar_reauth_required"
