"""
Store and service wiring for the HTTP layer and the worker.

Backends are chosen from settings once per process. Routes receive them
through FastAPI dependencies, so tests swap them with dependency_overrides.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.repositories.contact_repository import (
    ContactRepository,
    InMemoryContactRepository,
    PostgresContactRepository,
)
from leadflow.repositories.credential_repository import (
    CredentialRepository,
    InMemoryCredentialRepository,
    PostgresCredentialRepository,
)
from leadflow.repositories.ignored_sender_repository import (
    IgnoredSenderRepository,
    InMemoryIgnoredSenderRepository,
    PostgresIgnoredSenderRepository,
    RedisIgnoredSenderRepository,
)
from leadflow.repositories.sync_state_repository import (
    InMemorySyncStateRepository,
    PostgresSyncStateRepository,
    SyncStateRepository,
)
from leadflow.repositories.triage_repository import (
    InMemoryTriageRepository,
    PostgresTriageRepository,
    TriageRepository,
)
from leadflow.services.calendar.google_client import GoogleCalendarReader
from leadflow.services.contact_service import ContactService
from leadflow.services.ingestion_service import (
    MailboxIngestionService,
    MailboxReaderFactory,
    MessageAssociationService,
)
from leadflow.services.insight_service import InsightService
from leadflow.services.mailbox.google_client import GoogleMailboxService
from leadflow.services.redis_client import fast_redis
from leadflow.services.triage.engine import TriageActionEngine

logger = get_logger(__name__)


@dataclass
class StoreRegistry:
    contacts: ContactRepository
    triage: TriageRepository
    ignored: IgnoredSenderRepository
    sync_state: SyncStateRepository
    credentials: CredentialRepository


def build_stores() -> StoreRegistry:
    if settings.uses_postgres():
        stores = StoreRegistry(
            contacts=PostgresContactRepository(),
            triage=PostgresTriageRepository(),
            ignored=PostgresIgnoredSenderRepository(),
            sync_state=PostgresSyncStateRepository(),
            credentials=PostgresCredentialRepository(),
        )
    else:
        stores = StoreRegistry(
            contacts=InMemoryContactRepository(),
            triage=InMemoryTriageRepository(),
            ignored=InMemoryIgnoredSenderRepository(),
            sync_state=InMemorySyncStateRepository(),
            credentials=InMemoryCredentialRepository(),
        )

    if settings.uses_redis_ignored_senders():
        stores.ignored = RedisIgnoredSenderRepository(fast_redis)

    logger.info(
        "Stores configured",
        store_backend=settings.STORE_BACKEND,
        ignored_sender_backend=settings.IGNORED_SENDER_BACKEND,
    )
    return stores


@lru_cache
def get_stores() -> StoreRegistry:
    return build_stores()


def get_contact_store() -> ContactRepository:
    return get_stores().contacts


def get_triage_store() -> TriageRepository:
    return get_stores().triage


def get_ignored_store() -> IgnoredSenderRepository:
    return get_stores().ignored


def get_sync_state_store() -> SyncStateRepository:
    return get_stores().sync_state


def get_credential_store() -> CredentialRepository:
    return get_stores().credentials


def get_contact_service(store: ContactRepository = Depends(get_contact_store)) -> ContactService:
    return ContactService(store)


def get_triage_engine(
    contacts: ContactRepository = Depends(get_contact_store),
    triage: TriageRepository = Depends(get_triage_store),
    ignored: IgnoredSenderRepository = Depends(get_ignored_store),
) -> TriageActionEngine:
    return TriageActionEngine(contacts, triage, ignored)


def get_association_service(
    contacts: ContactRepository = Depends(get_contact_store),
    triage: TriageRepository = Depends(get_triage_store),
) -> MessageAssociationService:
    return MessageAssociationService(contacts, triage)


def get_ingestion_service(
    association: MessageAssociationService = Depends(get_association_service),
    sync_state: SyncStateRepository = Depends(get_sync_state_store),
    credentials: CredentialRepository = Depends(get_credential_store),
) -> MailboxIngestionService:
    return MailboxIngestionService(association, sync_state, credentials)


def get_reader_factory(
    credentials: CredentialRepository = Depends(get_credential_store),
) -> MailboxReaderFactory:
    return MailboxReaderFactory(credentials)


@lru_cache
def get_insight_service() -> InsightService:
    return InsightService()


def get_google_credential(
    x_google_token: str | None = Header(default=None, description="Google OAuth access token"),
    x_google_token_expires_at: datetime | None = Header(default=None),
    x_google_token_scope: str = Header(default=""),
) -> OAuthCredential:
    """The caller's Google credential, passed per request alongside the app JWT."""
    if not x_google_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "mailbox_reauth_required", "message": "Google access token missing"},
        )
    return OAuthCredential(
        access_token=x_google_token,
        expires_at=x_google_token_expires_at,
        scope=x_google_token_scope,
    )


async def get_mailbox_reader(
    credential: OAuthCredential = Depends(get_google_credential),
) -> AsyncIterator[GoogleMailboxService]:
    reader = GoogleMailboxService(credential)
    try:
        yield reader
    finally:
        await reader.close()


async def get_calendar_reader(
    credential: OAuthCredential = Depends(get_google_credential),
) -> AsyncIterator[GoogleCalendarReader]:
    reader = GoogleCalendarReader(credential)
    try:
        yield reader
    finally:
        await reader.close()
