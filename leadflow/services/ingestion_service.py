"""
Mailbox ingestion: routes each inbound message either onto the matching
contact's history or into the triage queue, never both and never neither.

Also drives incremental sync from the Gmail history API, entered either
from a Pub/Sub push notification or from the periodic sync job.
"""

import base64
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import (
    Direction,
    Interaction,
    InteractionType,
    Sentiment,
    utcnow,
)
from leadflow.models.domain.credential_domain import StoredMailboxCredential
from leadflow.models.domain.mailbox_domain import MailboxMessage
from leadflow.models.domain.triage_domain import TriageRecord
from leadflow.repositories.contact_repository import ContactRepository
from leadflow.repositories.credential_repository import CredentialRepository
from leadflow.repositories.sync_state_repository import SyncStateRepository
from leadflow.repositories.triage_repository import TriageRepository
from leadflow.services.google_oauth_service import GoogleOAuthService
from leadflow.services.mailbox.google_client import GoogleMailboxService, MailboxReaderError

logger = get_logger(__name__)


class AssociationOutcome(str, Enum):
    ASSOCIATED = "associated"
    TRIAGED = "triaged"
    SKIPPED = "skipped"


@dataclass(slots=True)
class AssociationResult:
    message_id: str
    outcome: AssociationOutcome
    contact_id: str | None = None


@dataclass(slots=True)
class SyncSummary:
    user_id: str
    history_id: str | None
    processed: int = 0
    associated: int = 0
    triaged: int = 0
    skipped: int = 0
    failed_message_ids: list[str] = field(default_factory=list)
    initialized: bool = False

    def record(self, result: AssociationResult) -> None:
        self.processed += 1
        if result.outcome == AssociationOutcome.ASSOCIATED:
            self.associated += 1
        elif result.outcome == AssociationOutcome.TRIAGED:
            self.triaged += 1
        else:
            self.skipped += 1


class PushNotificationError(ValueError):
    """Pub/Sub push body could not be decoded."""


def decode_push_notification(envelope: dict) -> tuple[str, str]:
    """
    Extract (emailAddress, historyId) from a Pub/Sub push envelope.

    The envelope carries `message.data` as base64 JSON:
    {"emailAddress": "...", "historyId": "..."}.
    """
    try:
        encoded = envelope["message"]["data"]
        payload = json.loads(base64.b64decode(encoded + "=" * (-len(encoded) % 4)))
    except (KeyError, TypeError, ValueError) as e:
        raise PushNotificationError(f"Invalid push notification: {e}") from e

    email_address = payload.get("emailAddress")
    history_id = payload.get("historyId")
    if not email_address or not history_id:
        raise PushNotificationError("Push notification is missing emailAddress or historyId")
    return email_address, str(history_id)


class MessageAssociationService:
    def __init__(
        self,
        contact_store: ContactRepository,
        triage_store: TriageRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.contact_store = contact_store
        self.triage_store = triage_store
        self.clock = clock

    async def associate(self, user_id: str, message: MailboxMessage) -> AssociationResult:
        """
        Route one inbound message.

        Sent messages are skipped. A sender matching a contact gets an
        `email-<message id>` interaction (replays dedupe); anyone else gets a
        triage record keyed by the message id (replays overwrite).
        """
        if message.is_sent():
            return AssociationResult(message.id, AssociationOutcome.SKIPPED)
        if not message.from_email:
            logger.warning("Skipping message without sender", user_id=user_id, message_id=message.id)
            return AssociationResult(message.id, AssociationOutcome.SKIPPED)

        received_at = message.get_received_datetime() or self.clock()
        contact = await self.contact_store.find_by_email(user_id, message.from_email)

        if contact is not None:
            interaction = Interaction(
                id=f"email-{message.id}",
                type=InteractionType.EMAIL,
                date=received_at,
                summary=f"Received: {message.subject}",
                sentiment=Sentiment.NEUTRAL,
                direction=Direction.INBOUND,
            )
            appended = await self.contact_store.append_interaction(user_id, contact.id, interaction)
            logger.info(
                "Associated message to contact",
                user_id=user_id,
                message_id=message.id,
                contact_id=contact.id,
                appended=appended,
            )
            return AssociationResult(message.id, AssociationOutcome.ASSOCIATED, contact.id)

        record = TriageRecord(
            id=message.id,
            email=message.from_email,
            from_name=message.from_name,
            subject=message.subject,
            snippet=message.snippet,
            date=received_at,
        )
        await self.triage_store.upsert_record(user_id, record)
        logger.info("Added message to triage", user_id=user_id, message_id=message.id)
        return AssociationResult(message.id, AssociationOutcome.TRIAGED)


class MailboxReaderFactory:
    """
    Builds a Mailbox Reader from a stored credential for work that runs
    without a user session. Credentials close to expiry are refreshed and
    saved back first.
    """

    def __init__(
        self,
        credentials: CredentialRepository,
        oauth: GoogleOAuthService | None = None,
    ):
        self.credentials = credentials
        self.oauth = oauth or GoogleOAuthService()

    async def __call__(self, stored: StoredMailboxCredential) -> GoogleMailboxService:
        credential = stored.credential
        if credential.needs_refresh() and credential.refresh_token:
            credential = await self.oauth.refresh_credential(credential)
            await self.credentials.save(stored.user_id, stored.mailbox_address, credential)
            logger.info("Mailbox credential refreshed", user_id=stored.user_id)
        return GoogleMailboxService(credential)


class MailboxIngestionService:
    """Incremental sync of one mailbox via the Gmail history API."""

    def __init__(
        self,
        association: MessageAssociationService,
        sync_state: SyncStateRepository,
        credentials: CredentialRepository,
    ):
        self.association = association
        self.sync_state = sync_state
        self.credentials = credentials

    async def _initialize_pointer(
        self, user_id: str, reader: GoogleMailboxService, new_history_id: str | None
    ) -> SyncSummary:
        history_id = new_history_id or (await reader.get_profile()).get("historyId")
        if history_id:
            await self.sync_state.set_history_id(user_id, str(history_id))
        logger.info("Mailbox sync pointer initialized", user_id=user_id, history_id=history_id)
        return SyncSummary(user_id=user_id, history_id=history_id, initialized=True)

    async def process_history(
        self, user_id: str, reader: GoogleMailboxService, new_history_id: str | None = None
    ) -> SyncSummary:
        """
        Ingest messages added since the stored pointer, then advance it.

        With no stored pointer the pointer is set and nothing is back-filled.
        A message that fails to fetch is left out and logged; the pointer still
        advances (the message stays visible in the mailbox itself).
        """
        start_history_id = await self.sync_state.get_history_id(user_id)

        if not start_history_id:
            return await self._initialize_pointer(user_id, reader, new_history_id)

        summary = SyncSummary(user_id=user_id, history_id=start_history_id)
        page_token = None
        latest_history_id = None
        while True:
            try:
                page = await reader.list_history(start_history_id, page_token=page_token)
            except MailboxReaderError as e:
                if e.status_code != 404:
                    raise
                # Pointer too old for the history API; restart from now
                logger.warning("Mailbox history pointer expired", user_id=user_id)
                return await self._initialize_pointer(user_id, reader, new_history_id)
            latest_history_id = page.history_id or latest_history_id

            for message_id in page.message_ids:
                try:
                    message = await reader.get_message(message_id)
                except MailboxReaderError as e:
                    if e.status_code == 404:
                        # Deleted before we got to it
                        summary.skipped += 1
                        continue
                    logger.warning(
                        "Failed to fetch message during sync",
                        user_id=user_id,
                        message_id=message_id,
                        error=str(e),
                    )
                    summary.failed_message_ids.append(message_id)
                    continue
                summary.record(await self.association.associate(user_id, message))

            page_token = page.next_page_token
            if not page_token:
                break

        pointer = new_history_id or latest_history_id
        if pointer:
            await self.sync_state.set_history_id(user_id, str(pointer))
        summary.history_id = pointer or start_history_id

        logger.info(
            "Mailbox history processed",
            user_id=user_id,
            processed=summary.processed,
            associated=summary.associated,
            triaged=summary.triaged,
            skipped=summary.skipped,
            failed=len(summary.failed_message_ids),
        )
        return summary

    async def handle_push(
        self, envelope: dict, reader_factory: Callable[[StoredMailboxCredential], Awaitable[GoogleMailboxService]]
    ) -> SyncSummary | None:
        """
        Handle a Gmail Pub/Sub push. Returns None when no user owns the mailbox.

        `reader_factory` builds a reader from the stored (and refreshed) credential.
        """
        email_address, history_id = decode_push_notification(envelope)
        stored = await self.credentials.find_by_mailbox(email_address)
        if stored is None:
            logger.warning("No user found for mailbox", mailbox=email_address)
            return None

        reader = await reader_factory(stored)
        try:
            return await self.process_history(stored.user_id, reader, new_history_id=history_id)
        finally:
            await reader.close()
