"""
Mailbox API Routes
HTTP endpoints for reading and sending mail with the caller's Google
credential, handing the credential to the sync worker, and receiving
Gmail Pub/Sub push notifications.
"""

import secrets

from fastapi import APIRouter, Depends, HTTPException, Query, status

from leadflow.auth.verify import auth_dependency
from leadflow.config import settings
from leadflow.dependencies import (
    get_credential_store,
    get_ingestion_service,
    get_mailbox_reader,
    get_reader_factory,
)
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.mailbox_request import (
    PushNotificationRequest,
    SendMessageRequest,
    StoreCredentialRequest,
    WatchRequest,
)
from leadflow.models.api.mailbox_response import (
    CredentialStoredResponse,
    SendMessageResponse,
    SyncSummaryResponse,
    ThreadBodyResponse,
    ThreadListResponse,
    WatchResponse,
)
from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.repositories.base import StoreError
from leadflow.repositories.credential_repository import CredentialRepository
from leadflow.routes.errors import google_error_to_http, require_user_id, store_error_to_http
from leadflow.services.google_oauth_service import GoogleOAuthError
from leadflow.services.ingestion_service import (
    MailboxIngestionService,
    MailboxReaderFactory,
    PushNotificationError,
)
from leadflow.services.mailbox.google_client import (
    GoogleMailboxService,
    MailboxAuthError,
    MailboxReaderError,
)
from leadflow.utils.email_address import normalize_email

logger = get_logger(__name__)

router = APIRouter(prefix="/mailbox", tags=["mailbox"])


@router.get("/threads", response_model=ThreadListResponse)
async def list_threads(
    claims: dict = Depends(auth_dependency),
    reader: GoogleMailboxService = Depends(get_mailbox_reader),
    page_size: int | None = Query(default=None, ge=1, le=100, description="Threads per page"),
    page_token: str | None = Query(default=None, description="Token from a previous page"),
    q: str | None = Query(default=None, description="Gmail search query"),
):
    """Recent threads, one summary per thread. Threads that fail to load are listed separately."""
    user_id = require_user_id(claims)
    try:
        page = await reader.list_threads(page_size=page_size, page_token=page_token, query_filter=q)
    except MailboxReaderError as e:
        logger.error("Error listing threads", user_id=user_id, error=str(e))
        raise google_error_to_http(e, MailboxAuthError) from e
    return ThreadListResponse.from_domain(page)


@router.get("/threads/{thread_id}/body", response_model=ThreadBodyResponse)
async def get_thread_body(
    thread_id: str,
    claims: dict = Depends(auth_dependency),
    reader: GoogleMailboxService = Depends(get_mailbox_reader),
):
    user_id = require_user_id(claims)
    try:
        body = await reader.get_thread_body(thread_id)
    except MailboxReaderError as e:
        logger.error("Error reading thread", user_id=user_id, thread_id=thread_id, error=str(e))
        raise google_error_to_http(e, MailboxAuthError) from e
    return ThreadBodyResponse(thread_id=body.thread_id, body=body.decoded_body, snippet=body.snippet)


@router.post("/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    claims: dict = Depends(auth_dependency),
    reader: GoogleMailboxService = Depends(get_mailbox_reader),
):
    user_id = require_user_id(claims)
    try:
        ack = await reader.send_message(
            to=request.to,
            subject=request.subject,
            body=request.body,
            in_reply_to_thread_id=request.thread_id,
        )
    except MailboxReaderError as e:
        logger.error("Error sending message", user_id=user_id, error=str(e))
        raise google_error_to_http(e, MailboxAuthError) from e
    return SendMessageResponse(success=True, message_id=ack.message_id, thread_id=ack.thread_id)


@router.post("/credentials", response_model=CredentialStoredResponse)
async def store_credential(
    request: StoreCredentialRequest,
    claims: dict = Depends(auth_dependency),
    credentials: CredentialRepository = Depends(get_credential_store),
):
    """Hand the mailbox credential to the background sync worker."""
    user_id = require_user_id(claims)
    mailbox_address = normalize_email(request.mailbox_address)
    credential = OAuthCredential(
        access_token=request.access_token,
        refresh_token=request.refresh_token,
        scope=request.scope,
        expires_at=request.expires_at,
    )
    try:
        await credentials.save(user_id, mailbox_address, credential)
    except StoreError as e:
        raise store_error_to_http(e) from e

    logger.info("Mailbox credential stored", user_id=user_id)
    return CredentialStoredResponse(mailbox_address=mailbox_address)


@router.post("/watch", response_model=WatchResponse)
async def watch_mailbox(
    request: WatchRequest,
    claims: dict = Depends(auth_dependency),
    reader: GoogleMailboxService = Depends(get_mailbox_reader),
):
    """Register Gmail push notifications for the caller's inbox."""
    user_id = require_user_id(claims)
    topic_name = request.topic_name or settings.GMAIL_PUSH_TOPIC
    if not topic_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Pub/Sub topic given and GMAIL_PUSH_TOPIC is not configured",
        )
    try:
        data = await reader.watch(topic_name, request.label_ids)
    except MailboxReaderError as e:
        logger.error("Error registering mailbox watch", user_id=user_id, error=str(e))
        raise google_error_to_http(e, MailboxAuthError) from e
    return WatchResponse(
        history_id=str(data["historyId"]) if data.get("historyId") else None,
        expiration=str(data["expiration"]) if data.get("expiration") else None,
    )


@router.post("/push", response_model=SyncSummaryResponse)
async def receive_push(
    request: PushNotificationRequest,
    token: str | None = Query(default=None, description="Push endpoint shared secret"),
    ingestion: MailboxIngestionService = Depends(get_ingestion_service),
    reader_factory: MailboxReaderFactory = Depends(get_reader_factory),
):
    """
    Gmail Pub/Sub push endpoint. Runs an incremental sync for the mailbox
    named in the notification. Not JWT-protected; guarded by GMAIL_PUSH_TOKEN.
    """
    if settings.GMAIL_PUSH_TOKEN and not secrets.compare_digest(
        token or "", settings.GMAIL_PUSH_TOKEN
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid push token")

    try:
        summary = await ingestion.handle_push(request.model_dump(), reader_factory)
    except PushNotificationError as e:
        # Acknowledge so Pub/Sub does not redeliver a message we can never parse
        logger.warning("Discarding undecodable push notification", error=str(e))
        return SyncSummaryResponse(handled=False)
    except GoogleOAuthError as e:
        logger.error("Push sync could not refresh credential", error=str(e), error_code=e.error_code)
        return SyncSummaryResponse(handled=False)
    except MailboxReaderError as e:
        logger.error("Push sync failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": e.error_code or "upstream_error", "message": str(e)},
        ) from e
    except StoreError as e:
        raise store_error_to_http(e) from e

    if summary is None:
        return SyncSummaryResponse(handled=False)
    return SyncSummaryResponse(
        handled=True,
        history_id=summary.history_id,
        initialized=summary.initialized,
        processed=summary.processed,
        associated=summary.associated,
        triaged=summary.triaged,
        skipped=summary.skipped,
        failed_message_ids=summary.failed_message_ids,
    )
