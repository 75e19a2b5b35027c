"""
Triage API Routes
HTTP endpoints for the triage queue: the classified view, a live view
stream, and the Ignore / Log / Convert / Restore actions.
"""

import json

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from leadflow.auth.verify import auth_dependency
from leadflow.dependencies import (
    get_contact_store,
    get_ignored_store,
    get_triage_engine,
    get_triage_store,
)
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.triage_request import ConvertLeadRequest
from leadflow.models.api.triage_response import (
    IgnoredSendersResponse,
    TriageActionResponse,
    TriageViewResponse,
)
from leadflow.models.domain.triage_domain import (
    TriageActionResult,
    TriageActionStatus,
    TriageActionType,
    TriageRecord,
)
from leadflow.repositories.base import StoreError
from leadflow.repositories.contact_repository import ContactRepository
from leadflow.repositories.ignored_sender_repository import IgnoredSenderRepository
from leadflow.repositories.triage_repository import TriageRepository
from leadflow.routes.errors import require_user_id, store_error_to_http
from leadflow.services.triage.classification import classify
from leadflow.services.triage.engine import (
    TriageActionEngine,
    TriageActionError,
    TriageValidationError,
)
from leadflow.services.triage.session import TriageViewSession

logger = get_logger(__name__)

router = APIRouter(prefix="/triage", tags=["triage"])


def _action_error_to_http(e: TriageActionError) -> HTTPException:
    detail = {"code": e.error_code, "message": str(e), "triage_id": e.triage_id}
    if e.retryable:
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={**detail, "retryable": True},
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


async def _load_record(
    triage: TriageRepository, user_id: str, triage_id: str
) -> TriageRecord | None:
    try:
        return await triage.get_record(user_id, triage_id)
    except StoreError as e:
        raise store_error_to_http(e) from e


def _already_gone(action: TriageActionType, triage_id: str) -> TriageActionResponse:
    # A replayed action whose earlier attempt already removed the record
    return TriageActionResponse.from_domain(
        TriageActionResult(action=action, triage_id=triage_id, status=TriageActionStatus.NOOP)
    )


@router.get("", response_model=TriageViewResponse)
async def get_triage_view(
    claims: dict = Depends(auth_dependency),
    contacts: ContactRepository = Depends(get_contact_store),
    triage: TriageRepository = Depends(get_triage_store),
    ignored: IgnoredSenderRepository = Depends(get_ignored_store),
):
    """Pending records split into suggested (known sender) and others, newest first."""
    user_id = require_user_id(claims)
    try:
        records = await triage.list_records(user_id)
        contact_list = await contacts.list_contacts(user_id)
        ignored_senders = await ignored.list_senders(user_id)
    except StoreError as e:
        logger.error("Error loading triage view", user_id=user_id, error=str(e))
        raise store_error_to_http(e) from e

    view = classify(records, contact_list, ignored_senders).sorted()
    return TriageViewResponse.from_domain(view)


@router.get("/stream")
async def stream_triage_view(
    claims: dict = Depends(auth_dependency),
    contacts: ContactRepository = Depends(get_contact_store),
    triage: TriageRepository = Depends(get_triage_store),
    ignored: IgnoredSenderRepository = Depends(get_ignored_store),
):
    """Server-sent events: the classified view, re-sent whenever any store changes."""
    user_id = require_user_id(claims)
    session = TriageViewSession(user_id, contacts, triage, ignored)
    try:
        await session.start()
    except StoreError as e:
        raise store_error_to_http(e) from e

    async def events():
        try:
            async for view in session.changes():
                payload = TriageViewResponse.from_domain(view).model_dump(mode="json")
                yield f"event: triage\ndata: {json.dumps(payload)}\n\n"
        finally:
            await session.stop()

    return StreamingResponse(events(), media_type="text/event-stream")


@router.post("/{triage_id}/ignore", response_model=TriageActionResponse)
async def ignore_sender(
    triage_id: str,
    claims: dict = Depends(auth_dependency),
    triage: TriageRepository = Depends(get_triage_store),
    engine: TriageActionEngine = Depends(get_triage_engine),
):
    """Ignore the record's sender and drop the record."""
    user_id = require_user_id(claims)
    record = await _load_record(triage, user_id, triage_id)
    if record is None:
        return _already_gone(TriageActionType.IGNORE, triage_id)

    try:
        result = await engine.ignore(user_id, record)
    except TriageActionError as e:
        raise _action_error_to_http(e) from e
    return TriageActionResponse.from_domain(result)


@router.post("/{triage_id}/log", response_model=TriageActionResponse)
async def log_to_contact(
    triage_id: str,
    claims: dict = Depends(auth_dependency),
    triage: TriageRepository = Depends(get_triage_store),
    engine: TriageActionEngine = Depends(get_triage_engine),
):
    """Append the message to the matching contact's history."""
    user_id = require_user_id(claims)
    record = await _load_record(triage, user_id, triage_id)
    if record is None:
        return _already_gone(TriageActionType.LOG, triage_id)

    try:
        result = await engine.log(user_id, record)
    except TriageActionError as e:
        raise _action_error_to_http(e) from e
    return TriageActionResponse.from_domain(result)


@router.post("/{triage_id}/convert", response_model=TriageActionResponse)
async def convert_to_lead(
    triage_id: str,
    request: ConvertLeadRequest,
    claims: dict = Depends(auth_dependency),
    triage: TriageRepository = Depends(get_triage_store),
    engine: TriageActionEngine = Depends(get_triage_engine),
):
    """Create a Lead from the record."""
    user_id = require_user_id(claims)
    record = await _load_record(triage, user_id, triage_id)
    if record is None:
        return _already_gone(TriageActionType.CONVERT, triage_id)

    try:
        result = await engine.convert(user_id, record, request.to_domain())
    except TriageValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_lead_details", "message": str(e), "fields": e.fields},
        ) from e
    except TriageActionError as e:
        raise _action_error_to_http(e) from e
    return TriageActionResponse.from_domain(result)


@router.get("/ignored", response_model=IgnoredSendersResponse)
async def list_ignored_senders(
    claims: dict = Depends(auth_dependency),
    ignored: IgnoredSenderRepository = Depends(get_ignored_store),
):
    user_id = require_user_id(claims)
    try:
        senders = await ignored.list_senders(user_id)
    except StoreError as e:
        raise store_error_to_http(e) from e
    return IgnoredSendersResponse(senders=sorted(senders))


@router.delete("/ignored/{email}", response_model=TriageActionResponse)
async def restore_sender(
    email: str,
    claims: dict = Depends(auth_dependency),
    engine: TriageActionEngine = Depends(get_triage_engine),
):
    """Un-ignore a sender; their pending records become visible again."""
    user_id = require_user_id(claims)
    try:
        result = await engine.restore(user_id, email)
    except TriageActionError as e:
        raise _action_error_to_http(e) from e
    return TriageActionResponse.from_domain(result)
