from datetime import UTC, datetime

import pytest

from leadflow.auth.verify import auth_dependency
from leadflow.models.domain.contact_domain import Contact, LeadStage
from leadflow.models.domain.triage_domain import TriageRecord
from leadflow.repositories.contact_repository import InMemoryContactRepository
from leadflow.repositories.ignored_sender_repository import InMemoryIgnoredSenderRepository
from leadflow.repositories.triage_repository import InMemoryTriageRepository
from leadflow.services.triage.engine import TriageActionEngine

USER_ID = "user-123"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": USER_ID}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakeRedis:
    """Set commands only, with redis-py's return conventions."""

    def __init__(self):
        self.sets: dict[str, set[str]] = {}

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self.sets.setdefault(key, set())
        added = len(set(members) - bucket)
        bucket.update(members)
        return added

    async def srem(self, key: str, *members: str) -> int:
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def sismember(self, key: str, member: str) -> int:
        return int(member in self.sets.get(key, set()))

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def contact_store():
    return InMemoryContactRepository()


@pytest.fixture
def triage_store():
    return InMemoryTriageRepository()


@pytest.fixture
def ignored_store():
    return InMemoryIgnoredSenderRepository()


@pytest.fixture
def engine(contact_store, triage_store, ignored_store):
    return TriageActionEngine(contact_store, triage_store, ignored_store, clock=lambda: NOW)


@pytest.fixture
def make_record():
    def _make(
        record_id: str = "t1",
        email: str = "a@x.com",
        subject: str = "Hello",
        snippet: str = "Are you free next week?",
        date: datetime = NOW,
        from_name: str = "Ann",
    ) -> TriageRecord:
        return TriageRecord(
            id=record_id,
            email=email,
            from_name=from_name,
            subject=subject,
            snippet=snippet,
            date=date,
        )

    return _make


@pytest.fixture
def make_contact():
    def _make(
        contact_id: str = "c1",
        email: str = "b@y.com",
        name: str = "Bea",
        stage: LeadStage = LeadStage.QUALIFICATION,
        **kwargs,
    ) -> Contact:
        return Contact(
            id=contact_id,
            name=name,
            email=email,
            company=kwargs.pop("company", "Acme"),
            stage=stage,
            created_at=kwargs.pop("created_at", NOW),
            stage_last_updated=kwargs.pop("stage_last_updated", NOW),
            **kwargs,
        )

    return _make
