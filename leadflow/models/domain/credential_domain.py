# leadflow/models/domain/credential_domain.py
"""
OAuth credential passed explicitly into the Mailbox and Calendar readers.
Expiry is checked here and surfaced as a typed error by the readers.
"""

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel


class OAuthCredential(BaseModel):
    """Google OAuth credential for one signed-in user."""

    provider: Literal["google"] = "google"
    access_token: str
    refresh_token: str | None = None
    scope: str = ""
    expires_at: datetime | None = None

    def is_expired(self) -> bool:
        """Check if access token is expired."""
        if not self.expires_at:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return datetime.now(UTC) >= expires_at

    def needs_refresh(self, buffer_minutes: int = 5) -> bool:
        """Check if token should be refreshed soon."""
        if not self.expires_at:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return datetime.now(UTC) + timedelta(minutes=buffer_minutes) >= expires_at

    def has_gmail_access(self) -> bool:
        # An empty scope means the caller did not tell us; let the API decide
        if not self.scope:
            return True
        return any(
            indicator in self.scope
            for indicator in ("gmail.readonly", "gmail.send", "gmail.modify", "mail.google.com")
        )

    def has_calendar_access(self) -> bool:
        if not self.scope:
            return True
        return "calendar" in self.scope


class StoredMailboxCredential(BaseModel):
    """A user's mailbox credential as persisted for the ingestion worker."""

    user_id: str
    mailbox_address: str
    credential: OAuthCredential
    updated_at: datetime
