"""
Contact mutation API: the single place routes and the insight flow go
through to change contacts. Stage changes stamp stage_last_updated here.
"""

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import Contact, Interaction, LeadStage, utcnow
from leadflow.repositories.contact_repository import ContactNotFoundError, ContactRepository
from leadflow.services.pipeline import stage_machine

logger = get_logger(__name__)

# Never writable through a generic patch
PROTECTED_FIELDS = frozenset({"id", "created_at"})
REQUIRED_FIELDS = frozenset({"name", "email", "company", "phone", "stage", "value"})


class ContactService:
    def __init__(self, store: ContactRepository, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def list_contacts(self, user_id: str) -> list[Contact]:
        return await self.store.list_contacts(user_id)

    async def get_contact(self, user_id: str, contact_id: str) -> Contact:
        contact = await self.store.get_contact(user_id, contact_id)
        if contact is None:
            raise ContactNotFoundError(user_id, contact_id)
        return contact

    async def create_contact(self, user_id: str, contact: Contact) -> Contact:
        """Store a new contact. A missing id is generated; stage_last_updated defaults to now."""
        if not contact.id:
            contact.id = str(uuid.uuid4())
        if contact.stage_last_updated is None:
            contact.stage_last_updated = self.clock()

        created = await self.store.create_contact(user_id, contact)
        if not created:
            logger.info("Contact already exists", user_id=user_id, contact_id=contact.id)
            return await self.get_contact(user_id, contact.id)

        logger.info("Contact created", user_id=user_id, contact_id=contact.id, stage=contact.stage.value)
        return contact

    async def seed_contacts(self, user_id: str, contacts: list[Contact]) -> int:
        """Insert starter contacts; ones whose id already exists are left alone."""
        created = 0
        for contact in contacts:
            if not contact.id:
                contact.id = str(uuid.uuid4())
            if await self.store.create_contact(user_id, contact):
                created += 1
        logger.info("Contacts seeded", user_id=user_id, requested=len(contacts), created=created)
        return created

    async def update_stage(self, user_id: str, contact_id: str, new_stage: LeadStage) -> Contact:
        """Unconditional stage set. Legality is not enforced here."""
        contact = await self.store.set_stage(user_id, contact_id, LeadStage(new_stage), self.clock())
        logger.info("Contact stage updated", user_id=user_id, contact_id=contact_id, stage=contact.stage.value)
        return contact

    async def advance_contact(self, user_id: str, contact_id: str) -> Contact:
        contact = await self.get_contact(user_id, contact_id)
        return await self.update_stage(user_id, contact_id, stage_machine.advance(contact.stage))

    async def regress_contact(self, user_id: str, contact_id: str) -> Contact:
        contact = await self.get_contact(user_id, contact_id)
        return await self.update_stage(user_id, contact_id, stage_machine.regress(contact.stage))

    async def lose_contact(self, user_id: str, contact_id: str) -> Contact:
        contact = await self.get_contact(user_id, contact_id)
        return await self.update_stage(user_id, contact_id, stage_machine.lose(contact.stage))

    async def update_contact(
        self,
        user_id: str,
        contact_id: str,
        fields: dict[str, Any],
        allow_interaction_overwrite: bool = False,
    ) -> Contact:
        """
        Patch contact fields.

        `id` and `created_at` are always dropped from the patch, as are nulls
        for fields a contact always carries. `interactions`
        is dropped unless allow_interaction_overwrite is set, in which case the
        whole history is replaced (explicit data correction only).
        A stage change through a patch stamps stage_last_updated like update_stage.
        """
        patch = {
            k: v
            for k, v in fields.items()
            if k not in PROTECTED_FIELDS and not (k in REQUIRED_FIELDS and v is None)
        }
        dropped = sorted(set(fields) - set(patch))

        interactions = patch.pop("interactions", None)
        if interactions is not None and not allow_interaction_overwrite:
            dropped.append("interactions")
            interactions = None
        if dropped:
            logger.warning(
                "Ignoring protected fields in contact patch",
                user_id=user_id,
                contact_id=contact_id,
                fields=dropped,
            )

        if "stage" in patch:
            patch["stage"] = LeadStage(patch["stage"])
            patch.setdefault("stage_last_updated", self.clock())

        contact = None
        if patch:
            contact = await self.store.patch_contact(user_id, contact_id, patch)
        if interactions is not None:
            history = [
                item if isinstance(item, Interaction) else Interaction.from_dict(item)
                for item in interactions
            ]
            contact = await self.store.replace_interactions(user_id, contact_id, history)
            logger.warning(
                "Interaction history overwritten",
                user_id=user_id,
                contact_id=contact_id,
                interaction_count=len(history),
            )
        return contact or await self.get_contact(user_id, contact_id)

    async def add_interaction(self, user_id: str, contact_id: str, interaction: Interaction) -> bool:
        """Append with dedup-by-id. Returns False when the interaction id was already logged."""
        if not interaction.id:
            interaction.id = str(uuid.uuid4())
        appended = await self.store.append_interaction(user_id, contact_id, interaction)
        logger.info(
            "Interaction added" if appended else "Interaction already present",
            user_id=user_id,
            contact_id=contact_id,
            interaction_id=interaction.id,
        )
        return appended

    async def delete_contact(self, user_id: str, contact_id: str) -> None:
        if not await self.store.delete_contact(user_id, contact_id):
            raise ContactNotFoundError(user_id, contact_id)
        logger.info("Contact deleted", user_id=user_id, contact_id=contact_id)
