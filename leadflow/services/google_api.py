"""
Shared low-level HTTP plumbing for the Google REST readers (Gmail and Calendar).
Handles bearer auth from an explicit credential, retry with backoff on
transient statuses, and mapping error responses onto the reader's
exception pair (a general error and its auth-failure subclass).
"""

import asyncio

import httpx

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.credential_domain import OAuthCredential

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# 403 reasons that mean "slow down", not "credential lacks access"
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}


class GoogleApiError(Exception):
    """Base for Google reader errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleApiClient:
    """
    Base client for one Google API on behalf of one credential.

    Subclasses set the service name, the error pair and the reauth error code.
    """

    service_name = "Google API"
    error_class: type[GoogleApiError] = GoogleApiError
    auth_error_class: type[GoogleApiError] = GoogleApiError
    reauth_error_code = "reauth_required"

    def __init__(self, credential: OAuthCredential, client: httpx.AsyncClient | None = None):
        self.credential = credential
        self._owns_client = client is None
        self._client = client or self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client (only if this instance created it)."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _get_auth_headers(self) -> dict:
        """Authorization headers; an expired credential fails here, before any HTTP call."""
        if self.credential.is_expired():
            raise self.auth_error_class(
                f"{self.service_name} credential expired. Please reconnect.",
                error_code=self.reauth_error_code,
                status_code=401,
            )
        return {
            "Authorization": f"Bearer {self.credential.access_token}",
            "Accept": "application/json",
        }

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff on transient failures."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        f"{self.service_name} retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    f"{self.service_name} request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError(f"{self.service_name} retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Validate a response and return its JSON body.

        Raises:
            auth_error_class: 401, or 403 for anything but rate limiting
            error_class: any other failure status or an unparseable body
        """
        logger.debug(
            f"{self.service_name} {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse {self.service_name} {operation} response", error=str(e))
                raise self.error_class(f"Invalid response format: {e}", error_code="malformed") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {}

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        if not isinstance(error_info, dict):
            error_info = {"message": str(error_info)}
        error_message = error_info.get("message", f"HTTP {response.status_code}")
        reasons = {
            item.get("reason") for item in error_info.get("errors", []) if isinstance(item, dict)
        }

        logger.error(
            f"{self.service_name} {operation} failed",
            status_code=response.status_code,
            error_message=error_message,
            reasons=sorted(r for r in reasons if r),
        )

        status = response.status_code
        if status == 401 or (status == 403 and not reasons & RATE_LIMIT_REASONS):
            raise self.auth_error_class(
                f"{self.service_name} authorization failed. Please reconnect.",
                error_code=self.reauth_error_code,
                status_code=status,
                response_data=error_data,
            )

        raise self.error_class(
            f"{self.service_name} error: {error_message}",
            error_code=str(error_info.get("code", status)),
            status_code=status,
            response_data=error_data,
        )
