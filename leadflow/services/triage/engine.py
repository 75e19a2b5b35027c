"""
Triage action engine: Ignore, Log, Convert and Restore.

Each action touches two stores without a transaction. Every write is keyed
so that replaying an action after a partial failure converges on the same
final state:

- Log appends an interaction whose id is derived from the triage record,
  and contact stores dedupe interactions by id.
- Convert creates the contact under an id derived from the triage record
  and reuses any contact already holding the address.
- Triage deletion and ignored-set writes are naturally idempotent.

When the durable effect lands but the triage delete fails, the action
reports PARTIAL; the record reappears and repeating the action finishes it.
"""

import hashlib
import math
import time
import uuid
from collections.abc import Callable
from datetime import datetime

from leadflow.infrastructure.observability.logging import get_logger, log_triage_action
from leadflow.models.domain.contact_domain import (
    Contact,
    Direction,
    Interaction,
    InteractionType,
    LeadStage,
    utcnow,
)
from leadflow.models.domain.triage_domain import (
    LeadDetails,
    TriageActionResult,
    TriageActionStatus,
    TriageActionType,
    TriageRecord,
)
from leadflow.repositories.base import StoreError
from leadflow.repositories.contact_repository import ContactNotFoundError, ContactRepository
from leadflow.repositories.ignored_sender_repository import IgnoredSenderRepository
from leadflow.repositories.triage_repository import TriageRepository
from leadflow.services.triage.classification import TriageOverlay
from leadflow.utils.email_address import normalize_email

logger = get_logger(__name__)

CONTACT_ID_NAMESPACE = uuid.UUID("5d0c7a4e-3f1b-4c8e-9a57-1e2f6b9d4c31")


class TriageActionError(Exception):
    """A triage action could not be applied."""

    def __init__(
        self,
        message: str,
        error_code: str,
        triage_id: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.triage_id = triage_id
        self.retryable = retryable


class TriageValidationError(ValueError):
    """Lead details are incomplete; nothing was written."""

    def __init__(self, message: str, fields: list[str]):
        super().__init__(message)
        self.fields = fields


def log_interaction_id(record: TriageRecord) -> str:
    """Stable per (record, content): repeat logs of the same message dedupe, a new reply does not."""
    digest = hashlib.sha1(record.snippet.encode("utf-8")).hexdigest()[:8]
    return f"email-{record.id}-{digest}"


def convert_interaction_id(record: TriageRecord) -> str:
    return f"email-{record.id}"


def converted_contact_id(user_id: str, record: TriageRecord) -> str:
    return str(uuid.uuid5(CONTACT_ID_NAMESPACE, f"{user_id}:{record.id}"))


def validate_lead_details(details: LeadDetails) -> None:
    missing = []
    if not (details.name or "").strip():
        missing.append("name")
    if not (details.company or "").strip():
        missing.append("company")
    if details.value is None or not math.isfinite(details.value) or details.value < 0:
        missing.append("value")
    if missing:
        raise TriageValidationError(
            f"Lead details are incomplete or invalid: {', '.join(missing)}", fields=missing
        )


class TriageActionEngine:
    def __init__(
        self,
        contact_store: ContactRepository,
        triage_store: TriageRepository,
        ignored_store: IgnoredSenderRepository,
        overlay: TriageOverlay | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.contact_store = contact_store
        self.triage_store = triage_store
        self.ignored_store = ignored_store
        self.overlay = overlay
        self.clock = clock

    async def _delete_record(self, user_id: str, triage_id: str) -> tuple[bool, bool]:
        """Returns (deleted, failed). A failed delete leaves the record for a later replay."""
        try:
            return await self.triage_store.delete_record(user_id, triage_id), False
        except StoreError as e:
            logger.warning(
                "Triage record delete failed; action will converge on retry",
                user_id=user_id,
                triage_id=triage_id,
                error=str(e),
            )
            return False, True

    def _store_failure(
        self, action: TriageActionType, user_id: str, triage_id: str | None, started: float, e: Exception
    ) -> TriageActionError:
        log_triage_action(
            action=action.value,
            user_id=user_id,
            triage_id=triage_id or "",
            status="failed",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error=str(e),
        )
        return TriageActionError(
            "Storage is temporarily unavailable, please retry",
            error_code="store_unavailable",
            triage_id=triage_id,
            retryable=True,
        )

    @staticmethod
    def _status(changed: bool, delete_failed: bool) -> TriageActionStatus:
        if delete_failed:
            return TriageActionStatus.PARTIAL
        return TriageActionStatus.APPLIED if changed else TriageActionStatus.NOOP

    def _finish(self, user_id: str, result: TriageActionResult, started: float) -> TriageActionResult:
        log_triage_action(
            action=result.action.value,
            user_id=user_id,
            triage_id=result.triage_id or "",
            status=result.status.value,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    # =================================================================
    # ACTIONS
    # =================================================================

    async def ignore(self, user_id: str, record: TriageRecord) -> TriageActionResult:
        """Hide every record from this sender until restored, and drop this record."""
        started = time.perf_counter()
        email = normalize_email(record.email)
        if self.overlay is not None:
            self.overlay.mark_pending_ignore(email)

        try:
            added = await self.ignored_store.add(user_id, email)
        except StoreError as e:
            if self.overlay is not None:
                self.overlay.clear_pending_ignore(email)
            raise self._store_failure(TriageActionType.IGNORE, user_id, record.id, started, e) from e

        deleted, delete_failed = await self._delete_record(user_id, record.id)
        result = TriageActionResult(
            action=TriageActionType.IGNORE,
            triage_id=record.id,
            status=self._status(added or deleted, delete_failed),
            email=email,
            triage_deleted=deleted,
        )
        return self._finish(user_id, result, started)

    async def log(self, user_id: str, record: TriageRecord) -> TriageActionResult:
        """Append the message to the matching contact's history and drop the record."""
        started = time.perf_counter()
        if self.overlay is not None:
            self.overlay.mark_logged(record.id, record.snippet)

        try:
            contact = await self.contact_store.find_by_email(user_id, record.email)
            if contact is None:
                raise TriageActionError(
                    f"No contact matches {record.email}",
                    error_code="no_matching_contact",
                    triage_id=record.id,
                )

            interaction = Interaction(
                id=log_interaction_id(record),
                type=InteractionType.EMAIL,
                date=record.date,
                summary=f"Email: {record.subject}",
                details=record.snippet or None,
                direction=Direction.INBOUND,
            )
            appended = await self.contact_store.append_interaction(user_id, contact.id, interaction)
        except TriageActionError:
            if self.overlay is not None:
                self.overlay.clear_logged(record.id)
            raise
        except ContactNotFoundError as e:
            # Contact deleted between lookup and append
            if self.overlay is not None:
                self.overlay.clear_logged(record.id)
            raise TriageActionError(
                f"No contact matches {record.email}",
                error_code="no_matching_contact",
                triage_id=record.id,
            ) from e
        except StoreError as e:
            if self.overlay is not None:
                self.overlay.clear_logged(record.id)
            raise self._store_failure(TriageActionType.LOG, user_id, record.id, started, e) from e

        deleted, delete_failed = await self._delete_record(user_id, record.id)
        result = TriageActionResult(
            action=TriageActionType.LOG,
            triage_id=record.id,
            status=self._status(appended or deleted, delete_failed),
            contact_id=contact.id,
            email=contact.normalized_email,
            interaction_added=appended,
            triage_deleted=deleted,
        )
        return self._finish(user_id, result, started)

    async def convert(
        self, user_id: str, record: TriageRecord, details: LeadDetails
    ) -> TriageActionResult:
        """
        Create a Lead from the record and drop the record.

        Validation runs before any write. A contact already holding the
        address (typically from an earlier convert whose delete failed) is
        reused instead of creating a second one.
        """
        started = time.perf_counter()
        validate_lead_details(details)

        email = normalize_email(details.email) or normalize_email(record.email)
        if not email:
            raise TriageValidationError("Lead details are incomplete or invalid: email", fields=["email"])
        contact_id = converted_contact_id(user_id, record)
        now = self.clock()
        seed = Interaction(
            id=convert_interaction_id(record),
            type=InteractionType.EMAIL,
            date=record.date,
            summary=f"Converted from email: {record.subject}",
            details=record.snippet or None,
            direction=Direction.INBOUND,
        )

        try:
            existing = await self.contact_store.get_contact(user_id, contact_id)
            if existing is None:
                existing = await self.contact_store.find_by_email(user_id, email)

            created = False
            interaction_added = False
            if existing is None:
                contact = Contact(
                    id=contact_id,
                    name=details.name.strip(),
                    email=email,
                    company=details.company.strip(),
                    phone=details.phone or "",
                    stage=LeadStage.LEAD,
                    value=float(details.value),
                    created_at=now,
                    stage_last_updated=now,
                    notes=details.notes,
                    expected_close_date=details.expected_close_date,
                )
                contact.add_interaction(seed)
                created = await self.contact_store.create_contact(user_id, contact)
                interaction_added = created

            if not created:
                # Lost a race with a concurrent convert, or reusing an earlier one
                contact = existing or await self.contact_store.get_contact(user_id, contact_id)
                interaction_added = await self.contact_store.append_interaction(
                    user_id, contact.id, seed
                )
                logger.info(
                    "Convert reused existing contact",
                    user_id=user_id,
                    triage_id=record.id,
                    contact_id=contact.id,
                )
        except StoreError as e:
            raise self._store_failure(TriageActionType.CONVERT, user_id, record.id, started, e) from e

        deleted, delete_failed = await self._delete_record(user_id, record.id)
        result = TriageActionResult(
            action=TriageActionType.CONVERT,
            triage_id=record.id,
            status=self._status(created or interaction_added or deleted, delete_failed),
            contact_id=contact.id,
            email=email,
            interaction_added=interaction_added,
            contact_created=created,
            triage_deleted=deleted,
        )
        return self._finish(user_id, result, started)

    async def restore(self, user_id: str, email: str) -> TriageActionResult:
        """Un-ignore a sender; their records become visible again."""
        started = time.perf_counter()
        address = normalize_email(email)
        if self.overlay is not None:
            self.overlay.clear_pending_ignore(address)

        try:
            removed = await self.ignored_store.remove(user_id, address)
        except StoreError as e:
            raise self._store_failure(TriageActionType.RESTORE, user_id, None, started, e) from e

        result = TriageActionResult(
            action=TriageActionType.RESTORE,
            triage_id=None,
            status=TriageActionStatus.APPLIED if removed else TriageActionStatus.NOOP,
            email=address,
        )
        return self._finish(user_id, result, started)
