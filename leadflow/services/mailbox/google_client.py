"""
Mailbox Reader backed by the Gmail REST API.
Lists recent threads as one summary per thread, fetches decoded thread
bodies, sends messages, and exposes the history/profile/watch calls the
ingestion job uses.

Partial-success policy: the thread list call fails hard, but each thread's
detail fetch is independent. Details are fetched in small batches with a
pause between batches and a per-request timeout; a detail that fails for
any reason drops only that thread.
"""

import asyncio
import base64
from email.mime.text import MIMEText

import httpx

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.credential_domain import OAuthCredential
from leadflow.models.domain.mailbox_domain import (
    EmailThread,
    HistoryPage,
    MailboxMessage,
    MailboxThread,
    SendAck,
    ThreadBody,
    ThreadPage,
)
from leadflow.services.google_api import GoogleApiClient, GoogleApiError

logger = get_logger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"
GMAIL_MAX_PAGE_SIZE = 500
SUMMARY_HEADERS = ("From", "Subject", "Date")


class MailboxReaderError(GoogleApiError):
    """Mailbox call failed (whole-request failure)."""


class MailboxAuthError(MailboxReaderError):
    """Credential expired, revoked or missing scopes; the user must reconnect."""


class GoogleMailboxService(GoogleApiClient):
    """Gmail client for one user's credential."""

    service_name = "Gmail API"
    error_class = MailboxReaderError
    auth_error_class = MailboxAuthError
    reauth_error_code = "mailbox_reauth_required"

    def __init__(
        self,
        credential: OAuthCredential,
        *,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        detail_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(credential, client=client)
        self.batch_size = max(1, batch_size or settings.MAILBOX_DETAIL_BATCH_SIZE)
        self.batch_delay = (
            settings.MAILBOX_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        )
        self.detail_timeout = detail_timeout or settings.MAILBOX_DETAIL_TIMEOUT_SECONDS

    def _url(self, path: str) -> str:
        return f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/{path}"

    async def _get_json(self, path: str, operation: str, params=None) -> dict:
        headers = self._get_auth_headers()
        try:
            response = await self._request_with_retry(
                "GET", self._url(path), headers=headers, params=params
            )
        except httpx.RequestError as e:
            logger.error(f"Gmail {operation} request failed", error=str(e))
            raise MailboxReaderError(f"Gmail request failed: {e}", error_code="network") from e
        return self._handle_api_response(response, operation)

    # =================================================================
    # THREADS
    # =================================================================

    async def list_threads(
        self,
        page_size: int | None = None,
        page_token: str | None = None,
        query_filter: str | None = None,
    ) -> ThreadPage:
        """
        List recent threads, each resolved to its most recent message.

        Args:
            page_size: Threads per page (defaults to MAILBOX_PAGE_SIZE)
            page_token: Token from a previous page
            query_filter: Gmail search query (e.g. "in:inbox")

        Returns:
            ThreadPage: summaries in list order, next page token, and the ids
            of threads whose detail fetch failed

        Raises:
            MailboxAuthError: credential rejected
            MailboxReaderError: the list call itself failed
        """
        params = {"maxResults": min(page_size or settings.MAILBOX_PAGE_SIZE, GMAIL_MAX_PAGE_SIZE)}
        if page_token:
            params["pageToken"] = page_token
        if query_filter:
            params["q"] = query_filter

        data = await self._get_json("threads", "list_threads", params=params)
        thread_ids = [ref["id"] for ref in data.get("threads", []) if ref.get("id")]
        if not thread_ids:
            logger.info("Mailbox is empty", page_token=page_token)
            return ThreadPage(threads=[], next_page_token=data.get("nextPageToken"))

        threads, dropped = await self._fetch_thread_summaries(thread_ids)

        logger.info(
            "Threads listed",
            requested=len(thread_ids),
            returned=len(threads),
            dropped=len(dropped),
        )
        return ThreadPage(
            threads=threads,
            next_page_token=data.get("nextPageToken"),
            dropped_thread_ids=dropped,
        )

    async def _fetch_thread_summaries(
        self, thread_ids: list[str]
    ) -> tuple[list[EmailThread], list[str]]:
        threads: list[EmailThread] = []
        dropped: list[str] = []

        for start in range(0, len(thread_ids), self.batch_size):
            if start and self.batch_delay:
                await asyncio.sleep(self.batch_delay)

            batch = thread_ids[start : start + self.batch_size]
            results = await asyncio.gather(
                *(self._fetch_thread_summary(thread_id) for thread_id in batch),
                return_exceptions=True,
            )

            for thread_id, result in zip(batch, results):
                if isinstance(result, EmailThread):
                    threads.append(result)
                elif isinstance(result, Exception):
                    dropped.append(thread_id)
                    logger.warning(
                        "Dropping thread after failed detail fetch",
                        thread_id=thread_id,
                        error_type=type(result).__name__,
                        error=str(result),
                    )
                else:
                    raise result

        return threads, dropped

    async def _fetch_thread_summary(self, thread_id: str) -> EmailThread:
        params = [("format", "metadata")] + [("metadataHeaders", h) for h in SUMMARY_HEADERS]
        # Single attempt; a failure here drops the thread rather than stalling the page
        response = await asyncio.wait_for(
            self._client.get(
                self._url(f"threads/{thread_id}"),
                headers=self._get_auth_headers(),
                params=params,
            ),
            timeout=self.detail_timeout,
        )
        data = self._handle_api_response(response, "get_thread")
        summary = MailboxThread(data).to_email_thread()
        if summary is None or not summary.email:
            raise MailboxReaderError(
                f"Thread {thread_id} has no readable message", error_code="malformed"
            )
        return summary

    async def get_thread_body(self, thread_id: str) -> ThreadBody:
        """Decoded body of the thread's most recent message."""
        data = await self._get_json(
            f"threads/{thread_id}", "get_thread_body", params={"format": "full"}
        )
        thread = MailboxThread(data)
        latest = thread.get_latest_message()
        if latest is None:
            raise MailboxReaderError(
                f"Thread {thread_id} has no messages", error_code="not_found", status_code=404
            )

        return ThreadBody(
            thread_id=thread.id or thread_id,
            decoded_body=latest.decoded_body,
            snippet=latest.snippet or thread.snippet,
        )

    # =================================================================
    # MESSAGES
    # =================================================================

    async def get_message(self, message_id: str) -> MailboxMessage:
        data = await self._get_json(
            f"messages/{message_id}", "get_message", params={"format": "full"}
        )
        return MailboxMessage(data)

    async def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        in_reply_to_thread_id: str | None = None,
    ) -> SendAck:
        """
        Send a plain-text message, optionally into an existing thread.

        Not retried: a replayed POST can deliver the message twice.
        """
        mime = MIMEText(body, "plain", "utf-8")
        mime["to"] = to
        mime["subject"] = subject
        raw = base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii")

        payload = {"raw": raw}
        if in_reply_to_thread_id:
            payload["threadId"] = in_reply_to_thread_id

        headers = self._get_auth_headers()
        try:
            response = await self._client.post(
                self._url("messages/send"), headers=headers, json=payload
            )
        except httpx.RequestError as e:
            logger.error("Gmail send request failed", error=str(e))
            raise MailboxReaderError(f"Gmail request failed: {e}", error_code="network") from e

        data = self._handle_api_response(response, "send_message")
        logger.info("Message sent", message_id=data.get("id"), thread_id=data.get("threadId"))
        return SendAck(
            message_id=data.get("id", ""),
            thread_id=data.get("threadId"),
            label_ids=data.get("labelIds", []),
        )

    # =================================================================
    # SYNC SUPPORT
    # =================================================================

    async def get_profile(self) -> dict:
        """Mailbox address and current history id."""
        return await self._get_json("profile", "get_profile")

    async def list_history(
        self, start_history_id: str, page_token: str | None = None
    ) -> HistoryPage:
        """Ids of messages added since `start_history_id`, oldest first, without duplicates."""
        params = {"startHistoryId": start_history_id, "historyTypes": "messageAdded"}
        if page_token:
            params["pageToken"] = page_token

        data = await self._get_json("history", "list_history", params=params)

        message_ids: list[str] = []
        seen: set[str] = set()
        for entry in data.get("history", []):
            for added in entry.get("messagesAdded", []):
                message_id = (added.get("message") or {}).get("id")
                if message_id and message_id not in seen:
                    seen.add(message_id)
                    message_ids.append(message_id)

        return HistoryPage(
            message_ids=message_ids,
            history_id=data.get("historyId"),
            next_page_token=data.get("nextPageToken"),
        )

    async def watch(self, topic_name: str, label_ids: list[str] | None = None) -> dict:
        """Register a Pub/Sub push watch on the mailbox."""
        headers = self._get_auth_headers()
        payload = {"topicName": topic_name, "labelIds": label_ids or ["INBOX"]}
        try:
            response = await self._request_with_retry(
                "POST", self._url("watch"), headers=headers, json=payload
            )
        except httpx.RequestError as e:
            raise MailboxReaderError(f"Gmail request failed: {e}", error_code="network") from e
        return self._handle_api_response(response, "watch")
