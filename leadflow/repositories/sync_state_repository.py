"""
Per-user mailbox sync pointer (the last Gmail history id the ingestion job
has processed).
"""

from leadflow.db.helpers import execute_query, fetch_one
from leadflow.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SyncStateRepository:
    async def get_history_id(self, user_id: str) -> str | None:
        raise NotImplementedError

    async def set_history_id(self, user_id: str, history_id: str) -> None:
        raise NotImplementedError


class InMemorySyncStateRepository(SyncStateRepository):
    def __init__(self):
        self._history_ids: dict[str, str] = {}

    async def get_history_id(self, user_id: str) -> str | None:
        return self._history_ids.get(user_id)

    async def set_history_id(self, user_id: str, history_id: str) -> None:
        self._history_ids[user_id] = history_id


class PostgresSyncStateRepository(SyncStateRepository):
    async def get_history_id(self, user_id: str) -> str | None:
        row = await fetch_one(
            "SELECT last_history_id FROM mailbox_sync_state WHERE user_id = %s", (user_id,)
        )
        return row["last_history_id"] if row else None

    async def set_history_id(self, user_id: str, history_id: str) -> None:
        query = """
            INSERT INTO mailbox_sync_state (user_id, last_history_id, last_sync_at, updated_at)
            VALUES (%s, %s, NOW(), NOW())
            ON CONFLICT (user_id)
            DO UPDATE SET
                last_history_id = EXCLUDED.last_history_id,
                last_sync_at = NOW(),
                updated_at = NOW()
        """
        await execute_query(query, (user_id, history_id))
        logger.debug("Mailbox sync pointer updated", user_id=user_id, history_id=history_id)
