"""
Mailbox API request models.
Used by routes for input validation.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """Request for sending a plain-text email."""

    to: str = Field(..., min_length=3, max_length=320, description="Recipient email address")
    subject: str = Field(..., max_length=998, description="Email subject")
    body: str = Field(..., max_length=50000, description="Plain text body")
    thread_id: str | None = Field(None, description="Thread to reply into")


class StoreCredentialRequest(BaseModel):
    """Hand the mailbox credential to the background sync worker."""

    mailbox_address: str = Field(..., min_length=3, max_length=320, description="Gmail address")
    access_token: str = Field(..., min_length=1, description="Google access token")
    refresh_token: str | None = Field(None, description="Google refresh token")
    scope: str = Field(default="", description="Granted OAuth scopes")
    expires_at: datetime | None = Field(None, description="Access token expiry")


class WatchRequest(BaseModel):
    topic_name: str | None = Field(
        None, description="Pub/Sub topic (defaults to the configured push topic)"
    )
    label_ids: list[str] = Field(default_factory=lambda: ["INBOX"], description="Labels to watch")


class PushNotificationRequest(BaseModel):
    """Gmail Pub/Sub push envelope."""

    message: dict = Field(..., description="Pub/Sub message with base64 `data`")
    subscription: str | None = Field(None, description="Subscription name")
