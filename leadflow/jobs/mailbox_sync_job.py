"""
Mailbox Sync Job: periodic incremental ingestion for every stored mailbox
credential. Complements Gmail push notifications, which can be delayed or
lost; running both is safe because ingestion is idempotent per message id.
"""

import asyncio
import time
from datetime import datetime

from leadflow.config import settings
from leadflow.db.pool import db_pool
from leadflow.dependencies import get_stores
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import utcnow
from leadflow.models.domain.credential_domain import StoredMailboxCredential
from leadflow.repositories.base import StoreError
from leadflow.repositories.credential_repository import CredentialRepository
from leadflow.services.google_oauth_service import GoogleOAuthError
from leadflow.services.ingestion_service import (
    MailboxIngestionService,
    MailboxReaderFactory,
    MessageAssociationService,
)
from leadflow.services.mailbox.google_client import MailboxAuthError, MailboxReaderError

logger = get_logger(__name__)

MAX_CONCURRENT_SYNCS = 5
SYNC_TIMEOUT_SECONDS = 120
ERROR_BACKOFF_SECONDS = 60


class MailboxSyncMetrics:
    """Counters for one job run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = utcnow()
        self.mailboxes_processed = 0
        self.mailboxes_failed = 0
        self.reauth_required = 0
        self.messages_processed = 0
        self.associated = 0
        self.triaged = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_failure(self, user_id: str, error: str, reauth: bool = False):
        self.mailboxes_failed += 1
        if reauth:
            self.reauth_required += 1
        self.errors.append({"user_id": user_id, "error": error, "reauth_required": reauth})
        logger.warning("Mailbox sync failed", user_id=user_id, error=error, reauth_required=reauth)

    def finalize(self):
        self.total_duration_seconds = (utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "mailbox_sync",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "mailboxes_processed": self.mailboxes_processed,
            "mailboxes_failed": self.mailboxes_failed,
            "reauth_required": self.reauth_required,
            "messages_processed": self.messages_processed,
            "associated": self.associated,
            "triaged": self.triaged,
            "errors_count": len(self.errors),
        }


class MailboxSyncJob:
    def __init__(
        self,
        ingestion: MailboxIngestionService,
        credentials: CredentialRepository,
        reader_factory: MailboxReaderFactory,
    ):
        self.ingestion = ingestion
        self.credentials = credentials
        self.reader_factory = reader_factory
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.metrics = MailboxSyncMetrics()

    async def run_once(self) -> dict:
        """Sync every stored mailbox once. One mailbox failing never stops the others."""
        if self.is_running:
            logger.warning("Mailbox sync already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()

            stored = await self.credentials.list_all()
            if not stored:
                logger.info("No mailbox credentials stored")
            else:
                semaphore = asyncio.Semaphore(MAX_CONCURRENT_SYNCS)

                async def guarded(item: StoredMailboxCredential):
                    async with semaphore:
                        await self._sync_mailbox(item)

                await asyncio.gather(*(guarded(item) for item in stored))

            self.metrics.finalize()
            self.last_run_time = utcnow()
            result = self.metrics.to_dict()
            logger.info("Mailbox sync job completed", **result)
            return result
        finally:
            self.is_running = False

    async def _sync_mailbox(self, stored: StoredMailboxCredential) -> None:
        start = time.perf_counter()
        try:
            reader = await self.reader_factory(stored)
            try:
                summary = await asyncio.wait_for(
                    self.ingestion.process_history(stored.user_id, reader),
                    timeout=SYNC_TIMEOUT_SECONDS,
                )
            finally:
                await reader.close()
        except TimeoutError:
            self.metrics.record_failure(stored.user_id, f"Timed out after {SYNC_TIMEOUT_SECONDS}s")
            return
        except GoogleOAuthError as e:
            self.metrics.record_failure(
                stored.user_id, str(e), reauth=e.error_code == "invalid_grant"
            )
            return
        except MailboxAuthError as e:
            self.metrics.record_failure(stored.user_id, str(e), reauth=True)
            return
        except MailboxReaderError as e:
            self.metrics.record_failure(stored.user_id, str(e))
            return
        except StoreError as e:
            self.metrics.record_failure(stored.user_id, f"Store failure: {e}")
            return

        self.metrics.mailboxes_processed += 1
        self.metrics.messages_processed += summary.processed
        self.metrics.associated += summary.associated
        self.metrics.triaged += summary.triaged
        logger.debug(
            "Mailbox synced",
            user_id=stored.user_id,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )


def build_mailbox_sync_job() -> MailboxSyncJob:
    stores = get_stores()
    association = MessageAssociationService(stores.contacts, stores.triage)
    ingestion = MailboxIngestionService(association, stores.sync_state, stores.credentials)
    return MailboxSyncJob(ingestion, stores.credentials, MailboxReaderFactory(stores.credentials))


async def start_mailbox_sync_scheduler():
    """Run the sync job forever at MAILBOX_SYNC_INTERVAL_SECONDS."""
    interval = settings.MAILBOX_SYNC_INTERVAL_SECONDS
    logger.info("Starting mailbox sync scheduler", interval_seconds=interval)

    if settings.uses_postgres():
        await db_pool.initialize()

    job = build_mailbox_sync_job()
    try:
        while True:
            try:
                await job.run_once()
                await asyncio.sleep(interval)
            except Exception as e:
                logger.error(
                    "Error in mailbox sync scheduler", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
    finally:
        if settings.uses_postgres():
            await db_pool.close()


async def run_mailbox_sync_once():
    """Single pass, for cron-style scheduling."""
    if settings.uses_postgres():
        await db_pool.initialize()
    try:
        await build_mailbox_sync_job().run_once()
    finally:
        if settings.uses_postgres():
            await db_pool.close()
