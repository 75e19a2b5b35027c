import asyncio

import pytest

from leadflow.models.domain.triage_domain import LeadDetails
from leadflow.repositories.base import StoreError
from leadflow.repositories.ignored_sender_repository import InMemoryIgnoredSenderRepository
from leadflow.repositories.triage_repository import InMemoryTriageRepository
from leadflow.services.triage.engine import TriageActionError
from leadflow.services.triage.session import TriageViewSession

USER = "user-123"


async def _settle(rounds: int = 5):
    for _ in range(rounds):
        await asyncio.sleep(0)


class GatedIgnoredRepository(InMemoryIgnoredSenderRepository):
    """add() blocks until the gate opens, optionally failing afterwards."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.gate = asyncio.Event()
        self.fail = fail

    async def add(self, user_id, email):
        await self.gate.wait()
        if self.fail:
            raise StoreError("add failed", operation="add")
        return await super().add(user_id, email)


class BrokenTriageRepository(InMemoryTriageRepository):
    async def list_records(self, user_id):
        raise StoreError("triage store down", operation="list_records")


@pytest.mark.asyncio
async def test_session_reclassifies_on_store_writes(
    contact_store, triage_store, ignored_store, make_record, make_contact
):
    async with TriageViewSession(USER, contact_store, triage_store, ignored_store) as session:
        assert len(session.view()) == 0

        await triage_store.upsert_record(USER, make_record("t2", "B@Y.com"))
        await _settle()
        assert [r.id for r in session.view().others] == ["t2"]

        await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))
        await _settle()
        assert [r.id for r in session.view().suggested] == ["t2"]


@pytest.mark.asyncio
async def test_changes_stream_yields_updates(contact_store, triage_store, ignored_store, make_record):
    session = TriageViewSession(USER, contact_store, triage_store, ignored_store)
    await session.start()
    stream = session.changes()

    first = await stream.__anext__()
    assert len(first) == 0

    await triage_store.upsert_record(USER, make_record("t1"))
    update = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert update.ids() == {"t1"}

    await session.stop()
    await stream.aclose()
    assert triage_store.subscriber_count(USER) == 0


@pytest.mark.asyncio
async def test_ignore_hides_records_before_store_write_resolves(
    contact_store, triage_store, make_record
):
    ignored = GatedIgnoredRepository()
    async with TriageViewSession(USER, contact_store, triage_store, ignored) as session:
        await triage_store.upsert_record(USER, make_record("t1", "spam@x.com"))
        await triage_store.upsert_record(USER, make_record("t2", "spam@x.com"))
        await _settle()

        action = asyncio.create_task(session.ignore(await triage_store.get_record(USER, "t1")))
        await _settle()
        assert len(session.view()) == 0

        ignored.gate.set()
        await action
        await _settle()
        assert len(session.view()) == 0
        # Store caught up, so the local marker is gone
        assert session.overlay.pending_ignores == set()


@pytest.mark.asyncio
async def test_failed_ignore_shows_records_again(contact_store, triage_store, make_record):
    ignored = GatedIgnoredRepository(fail=True)
    async with TriageViewSession(USER, contact_store, triage_store, ignored) as session:
        await triage_store.upsert_record(USER, make_record("t1", "spam@x.com"))
        await _settle()

        ignored.gate.set()
        with pytest.raises(TriageActionError):
            await session.ignore(await triage_store.get_record(USER, "t1"))

        assert session.view().ids() == {"t1"}


@pytest.mark.asyncio
async def test_log_and_convert_through_session(
    contact_store, triage_store, ignored_store, make_record, make_contact
):
    await contact_store.create_contact(USER, make_contact("c1", email="b@y.com"))
    await triage_store.upsert_record(USER, make_record("t2", "b@y.com"))
    await triage_store.upsert_record(USER, make_record("t1", "a@x.com", subject="Hi"))

    async with TriageViewSession(USER, contact_store, triage_store, ignored_store) as session:
        await session.log(await triage_store.get_record(USER, "t2"))
        await session.convert(
            await triage_store.get_record(USER, "t1"), LeadDetails(name="A", company="X", value=500)
        )
        await _settle()

        assert len(session.view()) == 0
        assert session.overlay.logged == {}
        assert len(await contact_store.list_contacts(USER)) == 2


@pytest.mark.asyncio
async def test_restore_makes_sender_visible(contact_store, triage_store, ignored_store, make_record):
    await ignored_store.add(USER, "spam@x.com")
    await triage_store.upsert_record(USER, make_record("t1", "spam@x.com"))

    async with TriageViewSession(USER, contact_store, triage_store, ignored_store) as session:
        assert len(session.view()) == 0
        await session.restore("spam@x.com")
        await _settle()
        assert session.view().ids() == {"t1"}


@pytest.mark.asyncio
async def test_start_raises_when_a_stream_fails(contact_store, ignored_store):
    session = TriageViewSession(USER, contact_store, BrokenTriageRepository(), ignored_store)

    with pytest.raises(StoreError):
        await session.start()

    assert contact_store.subscriber_count(USER) == 0
