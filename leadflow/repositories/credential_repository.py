# leadflow/repositories/credential_repository.py
"""
Stored mailbox credentials for the background ingestion job. The HTTP
surface passes the caller's own token per request; only the worker needs
tokens at rest, so the Postgres backend keeps them Fernet-encrypted.
"""

from leadflow.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import utcnow
from leadflow.models.domain.credential_domain import OAuthCredential, StoredMailboxCredential
from leadflow.services.encryption_service import decrypt_token, encrypt_token
from leadflow.utils.email_address import normalize_email

logger = get_logger(__name__)


class CredentialRepository:
    async def save(self, user_id: str, mailbox_address: str, credential: OAuthCredential) -> None:
        raise NotImplementedError

    async def get(self, user_id: str) -> StoredMailboxCredential | None:
        raise NotImplementedError

    async def find_by_mailbox(self, mailbox_address: str) -> StoredMailboxCredential | None:
        raise NotImplementedError

    async def list_all(self) -> list[StoredMailboxCredential]:
        raise NotImplementedError


class InMemoryCredentialRepository(CredentialRepository):
    def __init__(self):
        self._credentials: dict[str, StoredMailboxCredential] = {}

    async def save(self, user_id: str, mailbox_address: str, credential: OAuthCredential) -> None:
        self._credentials[user_id] = StoredMailboxCredential(
            user_id=user_id,
            mailbox_address=normalize_email(mailbox_address),
            credential=credential.model_copy(),
            updated_at=utcnow(),
        )

    async def get(self, user_id: str) -> StoredMailboxCredential | None:
        return self._credentials.get(user_id)

    async def find_by_mailbox(self, mailbox_address: str) -> StoredMailboxCredential | None:
        address = normalize_email(mailbox_address)
        for stored in self._credentials.values():
            if stored.mailbox_address == address:
                return stored
        return None

    async def list_all(self) -> list[StoredMailboxCredential]:
        return list(self._credentials.values())


class PostgresCredentialRepository(CredentialRepository):
    _COLUMNS = """
        user_id, mailbox_address, access_token_encrypted, refresh_token_encrypted,
        scope, expires_at, updated_at
    """

    @staticmethod
    def _row_to_stored(row: dict) -> StoredMailboxCredential:
        refresh = row.get("refresh_token_encrypted")
        return StoredMailboxCredential(
            user_id=row["user_id"],
            mailbox_address=row["mailbox_address"],
            credential=OAuthCredential(
                access_token=decrypt_token(row["access_token_encrypted"]),
                refresh_token=decrypt_token(refresh) if refresh else None,
                scope=row.get("scope") or "",
                expires_at=row.get("expires_at"),
            ),
            updated_at=row["updated_at"],
        )

    @with_db_retry()
    async def save(self, user_id: str, mailbox_address: str, credential: OAuthCredential) -> None:
        query = """
            INSERT INTO mailbox_credentials (
                user_id, mailbox_address, access_token_encrypted, refresh_token_encrypted,
                scope, expires_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id)
            DO UPDATE SET
                mailbox_address = EXCLUDED.mailbox_address,
                access_token_encrypted = EXCLUDED.access_token_encrypted,
                refresh_token_encrypted = COALESCE(
                    EXCLUDED.refresh_token_encrypted,
                    mailbox_credentials.refresh_token_encrypted
                ),
                scope = EXCLUDED.scope,
                expires_at = EXCLUDED.expires_at,
                updated_at = NOW()
        """
        await execute_query(
            query,
            (
                user_id,
                normalize_email(mailbox_address),
                encrypt_token(credential.access_token),
                encrypt_token(credential.refresh_token) if credential.refresh_token else None,
                credential.scope,
                credential.expires_at,
            ),
        )
        logger.info("Mailbox credential stored", user_id=user_id)

    async def get(self, user_id: str) -> StoredMailboxCredential | None:
        row = await fetch_one(
            f"SELECT {self._COLUMNS} FROM mailbox_credentials WHERE user_id = %s", (user_id,)
        )
        return self._row_to_stored(row) if row else None

    async def find_by_mailbox(self, mailbox_address: str) -> StoredMailboxCredential | None:
        row = await fetch_one(
            f"SELECT {self._COLUMNS} FROM mailbox_credentials WHERE mailbox_address = %s",
            (normalize_email(mailbox_address),),
        )
        return self._row_to_stored(row) if row else None

    async def list_all(self) -> list[StoredMailboxCredential]:
        rows = await fetch_all(f"SELECT {self._COLUMNS} FROM mailbox_credentials ORDER BY user_id")
        return [self._row_to_stored(row) for row in rows]
