"""
Mailbox API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from leadflow.models.domain.mailbox_domain import EmailThread, ThreadPage


class EmailThreadResponse(BaseModel):
    """One thread resolved to its most recent message."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Thread ID")
    subject: str = Field(..., description="Latest message subject")
    from_name: str = Field(..., alias="from", description="Sender display name")
    email: str = Field(..., description="Normalized sender address")
    date: datetime = Field(..., description="When the latest message arrived")
    snippet: str = Field(..., description="Latest message preview")

    @classmethod
    def from_domain(cls, thread: EmailThread) -> "EmailThreadResponse":
        return cls(
            id=thread.id,
            subject=thread.subject,
            from_name=thread.from_name,
            email=thread.email,
            date=thread.date,
            snippet=thread.snippet,
        )


class ThreadListResponse(BaseModel):
    threads: list[EmailThreadResponse] = Field(..., description="Threads in list order")
    next_page_token: str | None = Field(None, description="Token for the next page")
    dropped_thread_ids: list[str] = Field(
        default_factory=list, description="Threads whose details could not be fetched"
    )

    @classmethod
    def from_domain(cls, page: ThreadPage) -> "ThreadListResponse":
        return cls(
            threads=[EmailThreadResponse.from_domain(t) for t in page.threads],
            next_page_token=page.next_page_token,
            dropped_thread_ids=page.dropped_thread_ids,
        )


class ThreadBodyResponse(BaseModel):
    thread_id: str = Field(..., description="Thread ID")
    body: str = Field(..., description="Decoded plain text of the latest message")
    snippet: str = Field(default="", description="Thread preview")


class SendMessageResponse(BaseModel):
    success: bool = Field(..., description="Whether the message was accepted")
    message_id: str = Field(..., description="Sent message ID")
    thread_id: str | None = Field(None, description="Thread the message landed in")


class CredentialStoredResponse(BaseModel):
    mailbox_address: str = Field(..., description="Normalized mailbox address")
    stored: bool = True


class WatchResponse(BaseModel):
    history_id: str | None = Field(None, description="History id the watch starts from")
    expiration: str | None = Field(None, description="Watch expiry (ms since epoch)")


class SyncSummaryResponse(BaseModel):
    """Outcome of one incremental sync run."""

    handled: bool = Field(..., description="False when no user owns the mailbox")
    history_id: str | None = None
    initialized: bool = False
    processed: int = 0
    associated: int = 0
    triaged: int = 0
    skipped: int = 0
    failed_message_ids: list[str] = Field(default_factory=list)
