import base64
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.models.domain.mailbox_domain import HistoryPage, MailboxMessage
from leadflow.repositories.credential_repository import InMemoryCredentialRepository
from leadflow.repositories.sync_state_repository import InMemorySyncStateRepository
from leadflow.services.ingestion_service import (
    AssociationOutcome,
    MailboxIngestionService,
    MailboxReaderFactory,
    MessageAssociationService,
    PushNotificationError,
    decode_push_notification,
)
from leadflow.services.mailbox.google_client import GoogleMailboxService, MailboxReaderError

USER = "user-123"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _message(message_id, sender="Ann <a@x.com>", subject="Hello", labels=None, snippet="hi"):
    return MailboxMessage(
        {
            "id": message_id,
            "threadId": f"thread-{message_id}",
            "labelIds": labels or ["INBOX"],
            "snippet": snippet,
            "internalDate": str(int(NOW.timestamp() * 1000)),
            "payload": {
                "headers": [
                    {"name": "From", "value": sender},
                    {"name": "Subject", "value": subject},
                ]
            },
        }
    )


def _envelope(payload: dict) -> dict:
    data = base64.b64encode(json.dumps(payload).encode()).decode()
    return {"message": {"data": data, "messageId": "pubsub-1"}, "subscription": "projects/p/subscriptions/s"}


class FakeReader:
    """Stands in for GoogleMailboxService during history sync."""

    def __init__(self, pages=None, messages=None, profile_history_id="900"):
        self.pages = list(pages or [])
        self.messages = messages or {}
        self.profile_history_id = profile_history_id
        self.history_calls = []
        self.closed = False

    async def list_history(self, start_history_id, page_token=None):
        self.history_calls.append((start_history_id, page_token))
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    async def get_message(self, message_id):
        message = self.messages[message_id]
        if isinstance(message, Exception):
            raise message
        return message

    async def get_profile(self):
        return {"historyId": self.profile_history_id}

    async def close(self):
        self.closed = True


@pytest.fixture
def association(contact_store, triage_store):
    return MessageAssociationService(contact_store, triage_store, clock=lambda: NOW)


@pytest.fixture
def sync_state():
    return InMemorySyncStateRepository()


@pytest.fixture
def credentials():
    return InMemoryCredentialRepository()


@pytest.fixture
def ingestion(association, sync_state, credentials):
    return MailboxIngestionService(association, sync_state, credentials)


@pytest.mark.asyncio
async def test_known_sender_goes_to_contact_history_only(
    association, contact_store, triage_store, make_contact
):
    await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))

    result = await association.associate(USER, _message("m1", sender="Bea <B@Y.com>", subject="Re: quote"))

    assert result.outcome == AssociationOutcome.ASSOCIATED
    assert result.contact_id == "c1"
    contact = await contact_store.get_contact(USER, "c1")
    assert contact.interactions[0].id == "email-m1"
    assert contact.interactions[0].summary == "Received: Re: quote"
    assert await triage_store.list_records(USER) == []


@pytest.mark.asyncio
async def test_unknown_sender_goes_to_triage_only(association, contact_store, triage_store):
    result = await association.associate(USER, _message("m1", snippet="Need a quote"))

    assert result.outcome == AssociationOutcome.TRIAGED
    records = await triage_store.list_records(USER)
    assert [(r.id, r.email, r.from_name, r.snippet) for r in records] == [
        ("m1", "a@x.com", "Ann", "Need a quote")
    ]
    assert records[0].date == NOW
    assert await contact_store.list_contacts(USER) == []


@pytest.mark.asyncio
async def test_replayed_message_does_not_duplicate(association, contact_store, triage_store, make_contact):
    await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))

    for _ in range(2):
        await association.associate(USER, _message("m1", sender="b@y.com"))
        await association.associate(USER, _message("m2", sender="a@x.com"))

    assert len((await contact_store.get_contact(USER, "c1")).interactions) == 1
    assert len(await triage_store.list_records(USER)) == 1


@pytest.mark.asyncio
async def test_sent_and_senderless_messages_are_skipped(association, triage_store):
    sent = await association.associate(USER, _message("m1", labels=["SENT"]))
    anonymous = await association.associate(USER, _message("m2", sender=""))

    assert sent.outcome == AssociationOutcome.SKIPPED
    assert anonymous.outcome == AssociationOutcome.SKIPPED
    assert await triage_store.list_records(USER) == []


@pytest.mark.asyncio
async def test_first_sync_only_sets_pointer(ingestion, sync_state, triage_store):
    reader = FakeReader(profile_history_id="500")

    summary = await ingestion.process_history(USER, reader)

    assert summary.initialized is True
    assert await sync_state.get_history_id(USER) == "500"
    assert reader.history_calls == []
    assert await triage_store.list_records(USER) == []


@pytest.mark.asyncio
async def test_sync_follows_pages_and_advances_pointer(ingestion, sync_state, triage_store):
    await sync_state.set_history_id(USER, "100")
    reader = FakeReader(
        pages=[
            HistoryPage(message_ids=["m1"], history_id="150", next_page_token="p2"),
            HistoryPage(message_ids=["m2"], history_id="200"),
        ],
        messages={"m1": _message("m1"), "m2": _message("m2", sender="c@z.com")},
    )

    summary = await ingestion.process_history(USER, reader)

    assert reader.history_calls == [("100", None), ("100", "p2")]
    assert summary.triaged == 2
    assert summary.history_id == "200"
    assert await sync_state.get_history_id(USER) == "200"
    assert len(await triage_store.list_records(USER)) == 2


@pytest.mark.asyncio
async def test_expired_pointer_is_reset(ingestion, sync_state):
    await sync_state.set_history_id(USER, "1")
    reader = FakeReader(
        pages=[MailboxReaderError("gone", status_code=404)],
        profile_history_id="777",
    )

    summary = await ingestion.process_history(USER, reader)

    assert summary.initialized is True
    assert await sync_state.get_history_id(USER) == "777"


@pytest.mark.asyncio
async def test_other_history_errors_propagate(ingestion, sync_state):
    await sync_state.set_history_id(USER, "1")
    reader = FakeReader(pages=[MailboxReaderError("boom", status_code=500)])

    with pytest.raises(MailboxReaderError):
        await ingestion.process_history(USER, reader)
    assert await sync_state.get_history_id(USER) == "1"


@pytest.mark.asyncio
async def test_unfetchable_messages_are_left_out(ingestion, sync_state, triage_store):
    await sync_state.set_history_id(USER, "100")
    reader = FakeReader(
        pages=[HistoryPage(message_ids=["deleted", "broken", "ok"], history_id="120")],
        messages={
            "deleted": MailboxReaderError("not found", status_code=404),
            "broken": MailboxReaderError("server", status_code=500),
            "ok": _message("ok"),
        },
    )

    summary = await ingestion.process_history(USER, reader)

    assert summary.skipped == 1
    assert summary.failed_message_ids == ["broken"]
    assert [r.id for r in await triage_store.list_records(USER)] == ["ok"]
    assert await sync_state.get_history_id(USER) == "120"


def test_decode_push_notification():
    assert decode_push_notification(_envelope({"emailAddress": "me@x.com", "historyId": 42})) == (
        "me@x.com",
        "42",
    )


@pytest.mark.parametrize(
    "envelope",
    [
        {},
        {"message": {"data": "!!not base64!!"}},
        _envelope({"emailAddress": "me@x.com"}),
    ],
)
def test_decode_push_notification_rejects_bad_envelopes(envelope):
    with pytest.raises(PushNotificationError):
        decode_push_notification(envelope)


@pytest.mark.asyncio
async def test_handle_push_for_unknown_mailbox(ingestion):
    factory = AsyncMock()

    result = await ingestion.handle_push(_envelope({"emailAddress": "x@y.com", "historyId": "5"}), factory)

    assert result is None
    factory.assert_not_awaited()


@pytest.mark.asyncio
async def test_handle_push_uses_notification_history_id(ingestion, credentials, sync_state):
    await credentials.save(USER, "Me@X.com", OAuthCredential(access_token="token"))
    await sync_state.set_history_id(USER, "100")
    reader = FakeReader(pages=[HistoryPage(message_ids=[], history_id="110")])

    async def factory(stored):
        assert stored.user_id == USER
        return reader

    summary = await ingestion.handle_push(_envelope({"emailAddress": "me@x.com", "historyId": "130"}), factory)

    assert summary.history_id == "130"
    assert await sync_state.get_history_id(USER) == "130"
    assert reader.closed is True


@pytest.mark.asyncio
async def test_reader_factory_refreshes_expiring_credential(credentials):
    expiring = OAuthCredential(
        access_token="old",
        refresh_token="refresh",
        expires_at=datetime.now(UTC) + timedelta(minutes=1),
    )
    refreshed = OAuthCredential(
        access_token="new",
        refresh_token="refresh",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )
    await credentials.save(USER, "me@x.com", expiring)
    oauth = AsyncMock()
    oauth.refresh_credential.return_value = refreshed

    reader = await MailboxReaderFactory(credentials, oauth=oauth)(await credentials.get(USER))

    assert isinstance(reader, GoogleMailboxService)
    assert reader.credential.access_token == "new"
    assert (await credentials.get(USER)).credential.access_token == "new"
    await reader.close()


@pytest.mark.asyncio
async def test_reader_factory_leaves_fresh_credential(credentials):
    await credentials.save(
        USER,
        "me@x.com",
        OAuthCredential(access_token="fresh", expires_at=datetime.now(UTC) + timedelta(hours=1)),
    )
    oauth = AsyncMock()

    reader = await MailboxReaderFactory(credentials, oauth=oauth)(await credentials.get(USER))

    oauth.refresh_credential.assert_not_awaited()
    assert reader.credential.access_token == "fresh"
    await reader.close()
