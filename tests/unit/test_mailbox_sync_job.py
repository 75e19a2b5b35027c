from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from leadflow.jobs.mailbox_sync_job import MailboxSyncJob
from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.repositories.base import StoreError
from leadflow.repositories.credential_repository import InMemoryCredentialRepository
from leadflow.services.google_oauth_service import GoogleOAuthError
from leadflow.services.ingestion_service import SyncSummary
from leadflow.services.mailbox.google_client import MailboxAuthError, MailboxReaderError


@pytest_asyncio.fixture
async def credentials():
    repo = InMemoryCredentialRepository()
    for user_id in ("u1", "u2", "u3"):
        await repo.save(user_id, f"{user_id}@x.com", OAuthCredential(access_token=f"token-{user_id}"))
    return repo


def _job(credentials, process_history, reader_factory=None):
    reader = AsyncMock()
    ingestion = AsyncMock()
    ingestion.process_history.side_effect = process_history
    factory = reader_factory or AsyncMock(return_value=reader)
    return MailboxSyncJob(ingestion, credentials, factory), reader


@pytest.mark.asyncio
async def test_run_once_syncs_every_mailbox(credentials):
    async def process_history(user_id, reader):
        return SyncSummary(user_id=user_id, history_id="1", processed=2, associated=1, triaged=1)

    job, reader = _job(credentials, process_history)

    result = await job.run_once()

    assert result["mailboxes_processed"] == 3
    assert result["messages_processed"] == 6
    assert result["associated"] == 3
    assert result["errors_count"] == 0
    assert reader.close.await_count == 3
    assert job.is_running is False


@pytest.mark.asyncio
async def test_one_failing_mailbox_does_not_stop_others(credentials):
    async def process_history(user_id, reader):
        if user_id == "u1":
            raise MailboxAuthError("revoked", error_code="mailbox_reauth_required", status_code=401)
        if user_id == "u2":
            raise StoreError("db down", operation="upsert_record")
        return SyncSummary(user_id=user_id, history_id="1", processed=1, triaged=1)

    job, _ = _job(credentials, process_history)

    result = await job.run_once()

    assert result["mailboxes_processed"] == 1
    assert result["mailboxes_failed"] == 2
    assert result["reauth_required"] == 1


@pytest.mark.asyncio
async def test_refresh_failure_counts_reauth_for_invalid_grant(credentials):
    async def factory(stored):
        if stored.user_id == "u1":
            raise GoogleOAuthError("expired", error_code="invalid_grant")
        raise MailboxReaderError("boom", status_code=500)

    job, _ = _job(credentials, AsyncMock(), reader_factory=factory)

    result = await job.run_once()

    assert result["mailboxes_failed"] == 3
    assert result["reauth_required"] == 1


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(credentials):
    job, _ = _job(credentials, AsyncMock())
    job.is_running = True

    assert await job.run_once() == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_no_credentials():
    job, _ = _job(InMemoryCredentialRepository(), AsyncMock())

    result = await job.run_once()

    assert result["mailboxes_processed"] == 0
    assert job.last_run_time is not None
