"""
Google OAuth token refresh for stored mailbox credentials.
Used by the ingestion job, which runs without a user session.
"""

import asyncio
from datetime import timedelta

import httpx

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import utcnow
from leadflow.models.domain.credential_domain import OAuthCredential

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

REQUEST_TIMEOUT = 30
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth errors."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class GoogleOAuthService:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    def _validate_config(self) -> None:
        if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
            raise GoogleOAuthError(
                "Google OAuth is not configured (GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET)",
                error_code="not_configured",
            )

    async def _post_with_retry(self, data: dict, operation: str) -> httpx.Response:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        client = self._client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        try:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(GOOGLE_TOKEN_URL, data=data, headers=headers)
                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        wait_time = BACKOFF_FACTOR**attempt
                        logger.warning(
                            "Google OAuth transient status",
                            operation=operation,
                            status_code=response.status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    return response
                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise
                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Google OAuth request error, retrying",
                        operation=operation,
                        attempt=attempt,
                        error=str(exc),
                    )
                    await asyncio.sleep(wait_time)
        finally:
            if self._client is None:
                await client.aclose()
        raise GoogleOAuthError(f"{operation} failed: retries exhausted")

    async def refresh_credential(self, credential: OAuthCredential) -> OAuthCredential:
        """
        Exchange the credential's refresh token for a fresh access token.

        Google usually omits the refresh token on refresh; the existing one is kept.

        Raises:
            GoogleOAuthError: missing refresh token, misconfiguration or a rejected refresh
        """
        if not credential.refresh_token:
            raise GoogleOAuthError("Credential has no refresh token", error_code="no_refresh_token")
        self._validate_config()

        data = {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "refresh_token": credential.refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_with_retry(data, operation="token_refresh")
        except httpx.RequestError as e:
            logger.error("Network error during token refresh", error=str(e))
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise GoogleOAuthError(
                f"Google OAuth service error (HTTP {response.status_code})"
            ) from e

        if not response.is_success or not body.get("access_token"):
            error_code = body.get("error", "unknown_error")
            logger.error(
                "Google token refresh failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=body.get("error_description"),
            )
            raise GoogleOAuthError(
                "Google authorization expired. Please reconnect."
                if error_code == "invalid_grant"
                else f"Token refresh failed: {error_code}",
                error_code=error_code,
                response_data=body,
            )

        expires_in = body.get("expires_in")
        logger.info("Google token refresh successful", expires_in=expires_in)
        return OAuthCredential(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or credential.refresh_token,
            scope=body.get("scope") or credential.scope,
            expires_at=utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
        )
