"""
Contact API Routes
HTTP endpoints for the pipeline: contact CRUD, stage moves, interactions
and insight enrichment. Every mutation goes through ContactService.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status

from leadflow.auth.verify import auth_dependency
from leadflow.dependencies import get_contact_service, get_insight_service
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.contact_request import (
    CreateContactRequest,
    InteractionRequest,
    SeedContactsRequest,
    UpdateContactRequest,
    UpdateStageRequest,
)
from leadflow.models.api.contact_response import (
    ContactListResponse,
    ContactResponse,
    FollowUpDraftResponse,
    InsightResponse,
    InteractionAddedResponse,
    SeedContactsResponse,
)
from leadflow.models.domain.contact_domain import Contact, Interaction, utcnow
from leadflow.repositories.base import StoreError
from leadflow.repositories.contact_repository import ContactNotFoundError
from leadflow.routes.errors import require_user_id, store_error_to_http
from leadflow.services.contact_service import ContactService
from leadflow.services.insight_service import InsightService
from leadflow.services.pipeline import stage_machine

logger = get_logger(__name__)

router = APIRouter(prefix="/contacts", tags=["contacts"])


def _to_interaction(request: InteractionRequest) -> Interaction:
    return Interaction(
        id=request.id or str(uuid.uuid4()),
        type=request.type,
        date=request.date or utcnow(),
        summary=request.summary,
        details=request.details,
        sentiment=request.sentiment,
        direction=request.direction,
    )


def _to_contact(request: CreateContactRequest) -> Contact:
    contact = Contact(
        id=request.id or "",
        name=request.name,
        email=request.email.strip(),
        company=request.company,
        phone=request.phone,
        stage=request.stage,
        value=request.value,
        notes=request.notes,
        expected_close_date=request.expected_close_date,
    )
    for item in request.interactions:
        contact.add_interaction(_to_interaction(item))
    return contact


def _to_response(contact: Contact) -> ContactResponse:
    now = utcnow()
    return ContactResponse.from_domain(
        contact,
        idle_days=stage_machine.idle_days(contact, now),
        is_stuck=stage_machine.is_stuck(contact, now=now),
    )


def _not_found(e: ContactNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"code": "contact_not_found", "message": str(e)},
    )


@router.get("", response_model=ContactListResponse)
async def list_contacts(
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    """All contacts, most idle first."""
    user_id = require_user_id(claims)
    try:
        contacts = await service.list_contacts(user_id)
    except StoreError as e:
        logger.error("Error listing contacts", user_id=user_id, error=str(e))
        raise store_error_to_http(e) from e

    responses = [_to_response(c) for c in stage_machine.sort_by_staleness(contacts)]
    return ContactListResponse(
        contacts=responses,
        total=len(responses),
        stuck_count=sum(1 for r in responses if r.is_stuck),
    )


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(
    request: CreateContactRequest,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    user_id = require_user_id(claims)
    try:
        contact = await service.create_contact(user_id, _to_contact(request))
    except StoreError as e:
        logger.error("Error creating contact", user_id=user_id, error=str(e))
        raise store_error_to_http(e) from e
    return _to_response(contact)


@router.post("/seed", response_model=SeedContactsResponse)
async def seed_contacts(
    request: SeedContactsRequest,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    """Load starter contacts. Existing ids are left untouched."""
    user_id = require_user_id(claims)
    try:
        created = await service.seed_contacts(user_id, [_to_contact(c) for c in request.contacts])
    except StoreError as e:
        raise store_error_to_http(e) from e
    return SeedContactsResponse(requested=len(request.contacts), created=created)


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    user_id = require_user_id(claims)
    try:
        contact = await service.get_contact(user_id, contact_id)
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    return _to_response(contact)


@router.patch("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: str,
    request: UpdateContactRequest,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    """Partial update. Interactions are only replaced with allow_interaction_overwrite."""
    user_id = require_user_id(claims)
    fields = request.model_dump(exclude_unset=True, exclude={"allow_interaction_overwrite"})
    if "email" in fields and fields["email"] is not None:
        fields["email"] = fields["email"].strip()
    if request.interactions is not None:
        fields["interactions"] = [_to_interaction(i) for i in request.interactions]

    try:
        contact = await service.update_contact(
            user_id,
            contact_id,
            fields,
            allow_interaction_overwrite=request.allow_interaction_overwrite,
        )
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        logger.error("Error updating contact", user_id=user_id, contact_id=contact_id, error=str(e))
        raise store_error_to_http(e) from e
    return _to_response(contact)


@router.put("/{contact_id}/stage", response_model=ContactResponse)
async def update_stage(
    contact_id: str,
    request: UpdateStageRequest,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    user_id = require_user_id(claims)
    try:
        contact = await service.update_stage(user_id, contact_id, request.stage)
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    return _to_response(contact)


async def _move(service: ContactService, move: str, user_id: str, contact_id: str) -> ContactResponse:
    operations = {
        "advance": service.advance_contact,
        "regress": service.regress_contact,
        "lose": service.lose_contact,
    }
    try:
        contact = await operations[move](user_id, contact_id)
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    return _to_response(contact)


@router.post("/{contact_id}/advance", response_model=ContactResponse)
async def advance_contact(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    return await _move(service, "advance", require_user_id(claims), contact_id)


@router.post("/{contact_id}/regress", response_model=ContactResponse)
async def regress_contact(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    return await _move(service, "regress", require_user_id(claims), contact_id)


@router.post("/{contact_id}/lose", response_model=ContactResponse)
async def lose_contact(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    return await _move(service, "lose", require_user_id(claims), contact_id)


@router.post("/{contact_id}/interactions", response_model=InteractionAddedResponse)
async def add_interaction(
    contact_id: str,
    request: InteractionRequest,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    """Append an interaction. Re-posting the same interaction id is a no-op."""
    user_id = require_user_id(claims)
    interaction = _to_interaction(request)
    try:
        added = await service.add_interaction(user_id, contact_id, interaction)
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    return InteractionAddedResponse(
        contact_id=contact_id, interaction_id=interaction.id, added=added
    )


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
):
    user_id = require_user_id(claims)
    try:
        await service.delete_contact(user_id, contact_id)
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{contact_id}/insight", response_model=InsightResponse)
async def generate_insight(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
    insights: InsightService = Depends(get_insight_service),
):
    """Generate a relationship insight and store it on the contact."""
    user_id = require_user_id(claims)
    try:
        contact = await service.get_contact(user_id, contact_id)
        insight = await insights.analyze_relationship(contact)
        await service.update_contact(user_id, contact_id, {"ai_insight": insight})
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    return InsightResponse(contact_id=contact_id, insight=insight)


@router.post("/{contact_id}/follow-up-draft", response_model=FollowUpDraftResponse)
async def generate_follow_up_draft(
    contact_id: str,
    claims: dict = Depends(auth_dependency),
    service: ContactService = Depends(get_contact_service),
    insights: InsightService = Depends(get_insight_service),
):
    user_id = require_user_id(claims)
    try:
        contact = await service.get_contact(user_id, contact_id)
    except ContactNotFoundError as e:
        raise _not_found(e) from e
    except StoreError as e:
        raise store_error_to_http(e) from e
    draft = await insights.generate_follow_up_draft(contact)
    return FollowUpDraftResponse(contact_id=contact_id, draft=draft)
