"""
Triage action tests, including replays after partial failures.
"""

from datetime import UTC, datetime

import pytest

from leadflow.models.domain.contact_domain import LeadStage
from leadflow.models.domain.triage_domain import LeadDetails, TriageActionStatus
from leadflow.repositories.base import StoreError
from leadflow.repositories.contact_repository import InMemoryContactRepository
from leadflow.repositories.ignored_sender_repository import InMemoryIgnoredSenderRepository
from leadflow.repositories.triage_repository import InMemoryTriageRepository
from leadflow.services.triage.classification import TriageOverlay, classify
from leadflow.services.triage.engine import (
    TriageActionEngine,
    TriageActionError,
    TriageValidationError,
    converted_contact_id,
    log_interaction_id,
)

USER = "user-123"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class FlakyTriageRepository(InMemoryTriageRepository):
    """Fails the next `failing_deletes` deletes."""

    def __init__(self, failing_deletes: int = 0):
        super().__init__()
        self.failing_deletes = failing_deletes

    async def delete_record(self, user_id, triage_id):
        if self.failing_deletes:
            self.failing_deletes -= 1
            raise StoreError("delete failed", operation="delete_record")
        return await super().delete_record(user_id, triage_id)


class FlakyIgnoredRepository(InMemoryIgnoredSenderRepository):
    def __init__(self, failing_adds: int = 0):
        super().__init__()
        self.failing_adds = failing_adds

    async def add(self, user_id, email):
        if self.failing_adds:
            self.failing_adds -= 1
            raise StoreError("add failed", operation="add")
        return await super().add(user_id, email)


class FlakyContactRepository(InMemoryContactRepository):
    def __init__(self, failing_appends: int = 0):
        super().__init__()
        self.failing_appends = failing_appends

    async def append_interaction(self, user_id, contact_id, interaction):
        if self.failing_appends:
            self.failing_appends -= 1
            raise StoreError("append failed", operation="append_interaction")
        return await super().append_interaction(user_id, contact_id, interaction)


class VanishingContactRepository(InMemoryContactRepository):
    """Deletes the matched contact right after the lookup."""

    async def find_by_email(self, user_id, email):
        contact = await super().find_by_email(user_id, email)
        if contact is not None:
            await self.delete_contact(user_id, contact.id)
        return contact


async def _view(contacts, triage, ignored, overlay=None):
    return classify(
        await triage.list_records(USER),
        await contacts.list_contacts(USER),
        await ignored.list_senders(USER),
        overlay,
    )


@pytest.mark.asyncio
async def test_convert_end_to_end(engine, contact_store, triage_store, ignored_store, make_record):
    record = make_record("t1", "a@x.com", subject="Hi")
    await triage_store.upsert_record(USER, record)

    before = await _view(contact_store, triage_store, ignored_store)
    assert [r.id for r in before.others] == ["t1"]

    result = await engine.convert(USER, record, LeadDetails(name="A", company="X", value=500))

    assert result.status == TriageActionStatus.APPLIED
    assert result.contact_created is True
    contacts = await contact_store.list_contacts(USER)
    assert len(contacts) == 1
    contact = contacts[0]
    assert contact.stage == LeadStage.LEAD
    assert contact.value == 500
    assert contact.email == "a@x.com"
    assert contact.stage_last_updated == NOW
    assert len(contact.interactions) == 1
    assert "Hi" in contact.interactions[0].summary

    after = await _view(contact_store, triage_store, ignored_store)
    assert len(after) == 0


@pytest.mark.asyncio
async def test_log_end_to_end_case_insensitive(
    engine, contact_store, triage_store, ignored_store, make_record, make_contact
):
    await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))
    record = make_record("t2", "B@Y.com", subject="Re: pricing")
    await triage_store.upsert_record(USER, record)

    before = await _view(contact_store, triage_store, ignored_store)
    assert [r.id for r in before.suggested] == ["t2"]

    result = await engine.log(USER, record)

    assert result.status == TriageActionStatus.APPLIED
    assert result.contact_id == "c1"
    contact = await contact_store.get_contact(USER, "c1")
    assert [i.id for i in contact.interactions] == [log_interaction_id(record)]
    assert contact.interactions[0].summary == "Email: Re: pricing"
    assert contact.last_interaction_date == record.date
    assert await triage_store.get_record(USER, "t2") is None


@pytest.mark.asyncio
async def test_log_twice_adds_one_interaction(
    engine, contact_store, triage_store, make_record, make_contact
):
    await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))
    record = make_record("t2", "b@y.com")
    await triage_store.upsert_record(USER, record)

    first = await engine.log(USER, record)
    second = await engine.log(USER, record)

    contact = await contact_store.get_contact(USER, "c1")
    assert len(contact.interactions) == 1
    assert first.interaction_added is True
    assert second.status == TriageActionStatus.NOOP
    assert await triage_store.get_record(USER, "t2") is None


@pytest.mark.asyncio
async def test_log_replay_after_failed_delete_converges(make_record, make_contact):
    contacts = InMemoryContactRepository()
    triage = FlakyTriageRepository(failing_deletes=1)
    engine = TriageActionEngine(contacts, triage, InMemoryIgnoredSenderRepository())
    await contacts.create_contact(USER, make_contact("c1", email="b@y.com"))
    record = make_record("t2", "b@y.com")
    await triage.upsert_record(USER, record)

    first = await engine.log(USER, record)
    assert first.status == TriageActionStatus.PARTIAL
    assert await triage.get_record(USER, "t2") is not None

    second = await engine.log(USER, record)
    assert second.status == TriageActionStatus.APPLIED
    assert second.interaction_added is False
    assert second.triage_deleted is True
    assert len((await contacts.get_contact(USER, "c1")).interactions) == 1


@pytest.mark.asyncio
async def test_new_message_in_logged_thread_can_be_logged_again(
    engine, contact_store, triage_store, make_record, make_contact
):
    await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))
    await engine.log(USER, make_record("t2", "b@y.com", snippet="first"))

    reply = make_record("t2", "b@y.com", snippet="follow-up reply")
    await triage_store.upsert_record(USER, reply)
    await engine.log(USER, reply)

    assert len((await contact_store.get_contact(USER, "c1")).interactions) == 2


@pytest.mark.asyncio
async def test_log_without_matching_contact_fails_and_unmarks(make_record):
    overlay = TriageOverlay()
    triage = InMemoryTriageRepository()
    engine = TriageActionEngine(
        InMemoryContactRepository(), triage, InMemoryIgnoredSenderRepository(), overlay=overlay
    )
    record = make_record("t1", "nobody@x.com")
    await triage.upsert_record(USER, record)

    with pytest.raises(TriageActionError) as exc:
        await engine.log(USER, record)

    assert exc.value.error_code == "no_matching_contact"
    assert exc.value.retryable is False
    assert overlay.logged == {}
    assert await triage.get_record(USER, "t1") is not None


@pytest.mark.asyncio
async def test_log_when_contact_disappears_mid_action(make_record, make_contact):
    overlay = TriageOverlay()
    contacts = VanishingContactRepository()
    triage = InMemoryTriageRepository()
    engine = TriageActionEngine(contacts, triage, InMemoryIgnoredSenderRepository(), overlay=overlay)
    await contacts.create_contact(USER, make_contact("c1", email="b@y.com"))
    record = make_record("t2", "b@y.com")
    await triage.upsert_record(USER, record)

    with pytest.raises(TriageActionError) as exc:
        await engine.log(USER, record)

    assert exc.value.error_code == "no_matching_contact"
    assert overlay.logged == {}
    assert await triage.get_record(USER, "t2") is not None


@pytest.mark.asyncio
async def test_log_store_failure_is_retryable_and_writes_nothing(make_record, make_contact):
    contacts = FlakyContactRepository(failing_appends=1)
    triage = InMemoryTriageRepository()
    engine = TriageActionEngine(contacts, triage, InMemoryIgnoredSenderRepository())
    await contacts.create_contact(USER, make_contact("c1", email="b@y.com"))
    record = make_record("t2", "b@y.com")
    await triage.upsert_record(USER, record)

    with pytest.raises(TriageActionError) as exc:
        await engine.log(USER, record)

    assert exc.value.retryable is True
    assert exc.value.error_code == "store_unavailable"
    assert await triage.get_record(USER, "t2") is not None

    result = await engine.log(USER, record)
    assert result.status == TriageActionStatus.APPLIED


@pytest.mark.asyncio
async def test_convert_twice_after_failed_delete_creates_one_contact(make_record):
    contacts = InMemoryContactRepository()
    triage = FlakyTriageRepository(failing_deletes=1)
    engine = TriageActionEngine(contacts, triage, InMemoryIgnoredSenderRepository())
    record = make_record("t1", "a@x.com", subject="Hi")
    await triage.upsert_record(USER, record)
    details = LeadDetails(name="A", company="X", value=500)

    first = await engine.convert(USER, record, details)
    assert first.status == TriageActionStatus.PARTIAL

    second = await engine.convert(USER, record, details)
    assert second.contact_created is False
    assert second.contact_id == first.contact_id
    assert second.triage_deleted is True

    contacts_with_email = [c for c in await contacts.list_contacts(USER) if c.email == "a@x.com"]
    assert len(contacts_with_email) == 1
    assert len(contacts_with_email[0].interactions) == 1
    assert await triage.get_record(USER, "t1") is None


@pytest.mark.asyncio
async def test_convert_reuses_contact_holding_the_address(
    engine, contact_store, triage_store, make_record, make_contact
):
    await contact_store.create_contact(USER, make_contact("existing", email="a@x.com"))
    record = make_record("t1", "A@X.com", subject="Hi")
    await triage_store.upsert_record(USER, record)

    result = await engine.convert(USER, record, LeadDetails(name="A", company="X", value=1))

    assert result.contact_id == "existing"
    assert result.contact_created is False
    assert result.interaction_added is True
    assert len(await contact_store.list_contacts(USER)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "override,expected",
    [(None, "a@x.com"), ("   ", "a@x.com"), (" Ann@Corp.com ", "ann@corp.com")],
)
async def test_convert_email_override(
    engine, contact_store, triage_store, make_record, override, expected
):
    record = make_record("t1", "A@X.com")
    await triage_store.upsert_record(USER, record)

    result = await engine.convert(
        USER, record, LeadDetails(name="A", company="X", value=500, email=override)
    )

    contact = await contact_store.get_contact(USER, result.contact_id)
    assert contact.email == expected
    assert result.email == expected


@pytest.mark.asyncio
async def test_converted_contact_id_is_deterministic(make_record):
    record = make_record("t1")
    assert converted_contact_id(USER, record) == converted_contact_id(USER, record)
    assert converted_contact_id(USER, record) != converted_contact_id("other-user", record)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "details,fields",
    [
        (LeadDetails(name="", company="X", value=1), ["name"]),
        (LeadDetails(name="A", company="  ", value=1), ["company"]),
        (LeadDetails(name="A", company="X", value=-5), ["value"]),
        (LeadDetails(name="A", company="X", value=float("nan")), ["value"]),
    ],
)
async def test_convert_validation_writes_nothing(
    engine, contact_store, triage_store, make_record, details, fields
):
    record = make_record("t1")
    await triage_store.upsert_record(USER, record)

    with pytest.raises(TriageValidationError) as exc:
        await engine.convert(USER, record, details)

    assert exc.value.fields == fields
    assert await contact_store.list_contacts(USER) == []
    assert await triage_store.get_record(USER, "t1") is not None


@pytest.mark.asyncio
async def test_ignore_hides_sender_and_restore_brings_records_back(
    engine, contact_store, triage_store, ignored_store, make_record
):
    await triage_store.upsert_record(USER, make_record("t1", "spam@x.com"))
    await triage_store.upsert_record(USER, make_record("t3", "Spam@X.com"))
    await triage_store.upsert_record(USER, make_record("t4", "a@x.com"))

    result = await engine.ignore(USER, await triage_store.get_record(USER, "t1"))

    assert result.status == TriageActionStatus.APPLIED
    assert await ignored_store.contains(USER, "spam@x.com")
    view = await _view(contact_store, triage_store, ignored_store)
    assert view.ids() == {"t4"}

    # Future records from the sender stay hidden
    await triage_store.upsert_record(USER, make_record("t5", "spam@x.com"))
    assert (await _view(contact_store, triage_store, ignored_store)).ids() == {"t4"}

    restored = await engine.restore(USER, "SPAM@x.com")
    assert restored.status == TriageActionStatus.APPLIED
    assert (await _view(contact_store, triage_store, ignored_store)).ids() == {"t3", "t4", "t5"}

    again = await engine.restore(USER, "spam@x.com")
    assert again.status == TriageActionStatus.NOOP


@pytest.mark.asyncio
async def test_ignore_failure_clears_pending_marker(make_record):
    overlay = TriageOverlay()
    triage = InMemoryTriageRepository()
    engine = TriageActionEngine(
        InMemoryContactRepository(), triage, FlakyIgnoredRepository(failing_adds=1), overlay=overlay
    )
    record = make_record("t1", "spam@x.com")
    await triage.upsert_record(USER, record)

    with pytest.raises(TriageActionError) as exc:
        await engine.ignore(USER, record)

    assert exc.value.retryable is True
    assert overlay.pending_ignores == set()
    assert await triage.get_record(USER, "t1") is not None


@pytest.mark.asyncio
async def test_ignore_replay_after_failed_delete(make_record):
    ignored = InMemoryIgnoredSenderRepository()
    triage = FlakyTriageRepository(failing_deletes=1)
    engine = TriageActionEngine(InMemoryContactRepository(), triage, ignored)
    record = make_record("t1", "spam@x.com")
    await triage.upsert_record(USER, record)

    first = await engine.ignore(USER, record)
    second = await engine.ignore(USER, record)

    assert first.status == TriageActionStatus.PARTIAL
    assert second.status == TriageActionStatus.APPLIED
    assert await ignored.list_senders(USER) == frozenset({"spam@x.com"})
    assert await triage.get_record(USER, "t1") is None
