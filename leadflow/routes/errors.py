"""
Shared HTTP error mapping for route handlers.
"""

from fastapi import HTTPException, status

from leadflow.repositories.base import StoreError
from leadflow.services.google_api import GoogleApiError


def require_user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id


def google_error_to_http(e: GoogleApiError, auth_error: type[GoogleApiError]) -> HTTPException:
    """Auth failures tell the client to reconnect; anything else is an upstream failure."""
    if isinstance(e, auth_error):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": e.error_code, "message": str(e)},
        )
    if e.status_code == status.HTTP_404_NOT_FOUND:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": str(e)},
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"code": e.error_code or "upstream_error", "message": str(e)},
    )


def store_error_to_http(e: StoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "store_unavailable", "message": "Storage is temporarily unavailable"},
    )
