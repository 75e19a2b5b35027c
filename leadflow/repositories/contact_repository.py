# leadflow/repositories/contact_repository.py
"""
Contact Store: durable per-user collection of contacts with snapshot
subscriptions. Two backends share one contract: an in-process store for
local use and tests, and a Postgres store (one JSONB document per contact).
"""

import copy
from collections import defaultdict
from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from leadflow.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from leadflow.db.pool import get_db_transaction
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import (
    PATCHABLE_CONTACT_FIELDS,
    Contact,
    Interaction,
    LeadStage,
)
from leadflow.repositories.base import SnapshotPublisher
from leadflow.utils.email_address import normalize_email

logger = get_logger(__name__)


class ContactNotFoundError(LookupError):
    """Raised when a contact id does not exist for the user."""

    def __init__(self, user_id: str, contact_id: str):
        super().__init__(f"Contact {contact_id} not found")
        self.user_id = user_id
        self.contact_id = contact_id


def _check_patch_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - PATCHABLE_CONTACT_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be patched: {', '.join(sorted(unknown))}")


class ContactRepository(SnapshotPublisher[list[Contact]]):
    """Contract shared by every contact store backend."""

    async def snapshot(self, user_id: str) -> list[Contact]:
        return await self.list_contacts(user_id)

    async def list_contacts(self, user_id: str) -> list[Contact]:
        raise NotImplementedError

    async def get_contact(self, user_id: str, contact_id: str) -> Contact | None:
        raise NotImplementedError

    async def find_by_email(self, user_id: str, email: str) -> Contact | None:
        """First contact (store order) whose lower-cased email matches."""
        raise NotImplementedError

    async def create_contact(self, user_id: str, contact: Contact) -> bool:
        """Insert a contact; returns False (and changes nothing) when the id already exists."""
        raise NotImplementedError

    async def patch_contact(self, user_id: str, contact_id: str, fields: dict[str, Any]) -> Contact:
        raise NotImplementedError

    async def replace_interactions(
        self, user_id: str, contact_id: str, interactions: list[Interaction]
    ) -> Contact:
        raise NotImplementedError

    async def append_interaction(
        self, user_id: str, contact_id: str, interaction: Interaction
    ) -> bool:
        """Append with dedup-by-id; returns False when the id is already present."""
        raise NotImplementedError

    async def set_stage(
        self, user_id: str, contact_id: str, stage: LeadStage, stamped_at: datetime
    ) -> Contact:
        raise NotImplementedError

    async def delete_contact(self, user_id: str, contact_id: str) -> bool:
        raise NotImplementedError


class InMemoryContactRepository(ContactRepository):
    """Process-local contact store. Reads hand out copies so callers cannot mutate state."""

    def __init__(self):
        super().__init__()
        self._contacts: dict[str, dict[str, Contact]] = defaultdict(dict)

    def _require(self, user_id: str, contact_id: str) -> Contact:
        contact = self._contacts[user_id].get(contact_id)
        if contact is None:
            raise ContactNotFoundError(user_id, contact_id)
        return contact

    async def list_contacts(self, user_id: str) -> list[Contact]:
        return copy.deepcopy(list(self._contacts[user_id].values()))

    async def get_contact(self, user_id: str, contact_id: str) -> Contact | None:
        contact = self._contacts[user_id].get(contact_id)
        return copy.deepcopy(contact) if contact else None

    async def find_by_email(self, user_id: str, email: str) -> Contact | None:
        target = normalize_email(email)
        if not target:
            return None
        for contact in self._contacts[user_id].values():
            if contact.normalized_email == target:
                return copy.deepcopy(contact)
        return None

    async def create_contact(self, user_id: str, contact: Contact) -> bool:
        if contact.id in self._contacts[user_id]:
            return False
        self._contacts[user_id][contact.id] = copy.deepcopy(contact)
        await self.publish(user_id)
        return True

    async def patch_contact(self, user_id: str, contact_id: str, fields: dict[str, Any]) -> Contact:
        _check_patch_fields(fields)
        contact = self._require(user_id, contact_id)
        for key, value in fields.items():
            setattr(contact, key, value)
        await self.publish(user_id)
        return copy.deepcopy(contact)

    async def replace_interactions(
        self, user_id: str, contact_id: str, interactions: list[Interaction]
    ) -> Contact:
        contact = self._require(user_id, contact_id)
        contact.replace_interactions(copy.deepcopy(interactions))
        await self.publish(user_id)
        return copy.deepcopy(contact)

    async def append_interaction(
        self, user_id: str, contact_id: str, interaction: Interaction
    ) -> bool:
        contact = self._require(user_id, contact_id)
        appended = contact.add_interaction(copy.deepcopy(interaction))
        if appended:
            await self.publish(user_id)
        return appended

    async def set_stage(
        self, user_id: str, contact_id: str, stage: LeadStage, stamped_at: datetime
    ) -> Contact:
        contact = self._require(user_id, contact_id)
        contact.stage = stage
        contact.stage_last_updated = stamped_at
        await self.publish(user_id)
        return copy.deepcopy(contact)

    async def delete_contact(self, user_id: str, contact_id: str) -> bool:
        removed = self._contacts[user_id].pop(contact_id, None) is not None
        if removed:
            await self.publish(user_id)
        return removed


class PostgresContactRepository(ContactRepository):
    """Contacts table: one row per (user_id, id) with the document in `data`."""

    async def list_contacts(self, user_id: str) -> list[Contact]:
        query = """
            SELECT data
            FROM contacts
            WHERE user_id = %s
            ORDER BY created_at, id
        """
        rows = await fetch_all(query, (user_id,))
        return [Contact.from_dict(row["data"]) for row in rows]

    async def get_contact(self, user_id: str, contact_id: str) -> Contact | None:
        query = """
            SELECT data
            FROM contacts
            WHERE user_id = %s AND id = %s
        """
        row = await fetch_one(query, (user_id, contact_id))
        return Contact.from_dict(row["data"]) if row else None

    async def find_by_email(self, user_id: str, email: str) -> Contact | None:
        target = normalize_email(email)
        if not target:
            return None
        query = """
            SELECT data
            FROM contacts
            WHERE user_id = %s AND email = %s
            ORDER BY created_at, id
            LIMIT 1
        """
        row = await fetch_one(query, (user_id, target))
        return Contact.from_dict(row["data"]) if row else None

    @with_db_retry()
    async def create_contact(self, user_id: str, contact: Contact) -> bool:
        query = """
            INSERT INTO contacts (user_id, id, email, data, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id, id) DO NOTHING
        """
        inserted = await execute_query(
            query,
            (user_id, contact.id, contact.normalized_email, Jsonb(contact.to_dict()), contact.created_at),
        )
        if inserted:
            logger.info("Contact created", user_id=user_id, contact_id=contact.id)
            await self.publish(user_id)
        return inserted > 0

    async def _rewrite(self, user_id: str, contact_id: str, mutate) -> Contact:
        """Read-modify-write a contact document under a row lock."""
        async with await get_db_transaction() as conn:
            row = await fetch_one(
                "SELECT data FROM contacts WHERE user_id = %s AND id = %s FOR UPDATE",
                (user_id, contact_id),
                connection=conn,
            )
            if row is None:
                raise ContactNotFoundError(user_id, contact_id)

            contact = Contact.from_dict(row["data"])
            mutate(contact)
            await execute_query(
                """
                UPDATE contacts
                SET data = %s, email = %s, updated_at = NOW()
                WHERE user_id = %s AND id = %s
                """,
                (Jsonb(contact.to_dict()), contact.normalized_email, user_id, contact_id),
                connection=conn,
            )

        await self.publish(user_id)
        return contact

    async def patch_contact(self, user_id: str, contact_id: str, fields: dict[str, Any]) -> Contact:
        _check_patch_fields(fields)

        def _apply(contact: Contact) -> None:
            for key, value in fields.items():
                setattr(contact, key, value)

        return await self._rewrite(user_id, contact_id, _apply)

    async def replace_interactions(
        self, user_id: str, contact_id: str, interactions: list[Interaction]
    ) -> Contact:
        return await self._rewrite(
            user_id, contact_id, lambda contact: contact.replace_interactions(interactions)
        )

    @with_db_retry()
    async def append_interaction(
        self, user_id: str, contact_id: str, interaction: Interaction
    ) -> bool:
        # The containment guard makes the append a no-op when the id is already stored
        query = """
            UPDATE contacts
            SET data = jsonb_set(
                    jsonb_set(
                        data,
                        '{interactions}',
                        COALESCE(data->'interactions', '[]'::jsonb) || %s
                    ),
                    '{last_interaction_date}',
                    to_jsonb(GREATEST(COALESCE(data->>'last_interaction_date', ''), %s))
                ),
                updated_at = NOW()
            WHERE user_id = %s
              AND id = %s
              AND NOT (COALESCE(data->'interactions', '[]'::jsonb) @> %s)
        """
        updated = await execute_query(
            query,
            (
                Jsonb([interaction.to_dict()]),
                interaction.date.isoformat(),
                user_id,
                contact_id,
                Jsonb([{"id": interaction.id}]),
            ),
        )
        if updated:
            await self.publish(user_id)
            return True

        exists = await fetch_one(
            "SELECT 1 AS found FROM contacts WHERE user_id = %s AND id = %s",
            (user_id, contact_id),
        )
        if exists is None:
            raise ContactNotFoundError(user_id, contact_id)
        return False

    async def set_stage(
        self, user_id: str, contact_id: str, stage: LeadStage, stamped_at: datetime
    ) -> Contact:
        query = """
            UPDATE contacts
            SET data = data || jsonb_build_object(
                    'stage', %s::text,
                    'stage_last_updated', %s::text
                ),
                updated_at = NOW()
            WHERE user_id = %s AND id = %s
            RETURNING data
        """
        row = await fetch_one(query, (stage.value, stamped_at.isoformat(), user_id, contact_id))
        if row is None:
            raise ContactNotFoundError(user_id, contact_id)
        await self.publish(user_id)
        return Contact.from_dict(row["data"])

    async def delete_contact(self, user_id: str, contact_id: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM contacts WHERE user_id = %s AND id = %s", (user_id, contact_id)
        )
        if deleted:
            await self.publish(user_id)
        return deleted > 0
