"""
Encryption service for stored mailbox credentials.
Uses Fernet symmetric encryption so OAuth tokens never sit in the database in clear text.
"""

from cryptography.fernet import Fernet, InvalidToken

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class EncryptionError(Exception):
    """Custom exception for encryption/decryption errors."""

    pass


def _get_fernet() -> Fernet:
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError("ENCRYPTION_KEY not configured in environment")

    try:
        return Fernet(settings.ENCRYPTION_KEY.encode("utf-8"))
    except Exception as e:
        logger.error("Failed to initialize Fernet cipher", error=str(e))
        raise EncryptionError(f"Invalid encryption key: {e}") from e


def encrypt_token(token: str) -> bytes:
    """
    Encrypt a token string for database storage.

    Returns:
        bytes: Encrypted token (ready for BYTEA storage)

    Raises:
        EncryptionError: If the key is missing or encryption fails
    """
    if not token or not isinstance(token, str):
        raise EncryptionError("Token must be a non-empty string")

    fernet = _get_fernet()
    try:
        return fernet.encrypt(token.encode("utf-8"))
    except Exception as e:
        logger.error("Failed to encrypt token", error=str(e))
        raise EncryptionError(f"Encryption failed: {e}") from e


def decrypt_token(encrypted_token: bytes) -> str:
    """Decrypt a token read back from the database."""
    if not encrypted_token:
        raise EncryptionError("Encrypted token must be non-empty bytes")

    fernet = _get_fernet()
    try:
        return fernet.decrypt(bytes(encrypted_token)).decode("utf-8")
    except InvalidToken as e:
        logger.error("Token decryption failed - invalid token", error=str(e))
        raise EncryptionError("Invalid or corrupted token") from e
