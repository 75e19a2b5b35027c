# leadflow/repositories/ignored_sender_repository.py
"""
Ignored-sender set: normalized addresses whose triage records stay hidden
until restored. Backed by memory, a Postgres table or a Redis set.
"""

from collections import defaultdict

from leadflow.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.repositories.base import SnapshotPublisher
from leadflow.services.redis_client import FastRedisClient
from leadflow.utils.email_address import normalize_email

logger = get_logger(__name__)


class IgnoredSenderRepository(SnapshotPublisher[frozenset[str]]):
    async def snapshot(self, user_id: str) -> frozenset[str]:
        return await self.list_senders(user_id)

    async def list_senders(self, user_id: str) -> frozenset[str]:
        raise NotImplementedError

    async def contains(self, user_id: str, email: str) -> bool:
        raise NotImplementedError

    async def add(self, user_id: str, email: str) -> bool:
        """Returns False when the address was already ignored."""
        raise NotImplementedError

    async def remove(self, user_id: str, email: str) -> bool:
        """Returns False when the address was not ignored."""
        raise NotImplementedError


class InMemoryIgnoredSenderRepository(IgnoredSenderRepository):
    def __init__(self):
        super().__init__()
        self._senders: dict[str, set[str]] = defaultdict(set)

    async def list_senders(self, user_id: str) -> frozenset[str]:
        return frozenset(self._senders[user_id])

    async def contains(self, user_id: str, email: str) -> bool:
        return normalize_email(email) in self._senders[user_id]

    async def add(self, user_id: str, email: str) -> bool:
        address = normalize_email(email)
        if not address or address in self._senders[user_id]:
            return False
        self._senders[user_id].add(address)
        await self.publish(user_id)
        return True

    async def remove(self, user_id: str, email: str) -> bool:
        address = normalize_email(email)
        if address not in self._senders[user_id]:
            return False
        self._senders[user_id].discard(address)
        await self.publish(user_id)
        return True


class PostgresIgnoredSenderRepository(IgnoredSenderRepository):
    async def list_senders(self, user_id: str) -> frozenset[str]:
        rows = await fetch_all("SELECT email FROM ignored_senders WHERE user_id = %s", (user_id,))
        return frozenset(row["email"] for row in rows)

    async def contains(self, user_id: str, email: str) -> bool:
        row = await fetch_one(
            "SELECT 1 AS found FROM ignored_senders WHERE user_id = %s AND email = %s",
            (user_id, normalize_email(email)),
        )
        return row is not None

    @with_db_retry()
    async def add(self, user_id: str, email: str) -> bool:
        address = normalize_email(email)
        if not address:
            return False
        query = """
            INSERT INTO ignored_senders (user_id, email, created_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (user_id, email) DO NOTHING
        """
        inserted = await execute_query(query, (user_id, address))
        if inserted:
            await self.publish(user_id)
        return inserted > 0

    @with_db_retry()
    async def remove(self, user_id: str, email: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM ignored_senders WHERE user_id = %s AND email = %s",
            (user_id, normalize_email(email)),
        )
        if deleted:
            await self.publish(user_id)
        return deleted > 0


class RedisIgnoredSenderRepository(IgnoredSenderRepository):
    """One Redis set per user: `ignored_senders:{user_id}`."""

    def __init__(self, redis_client: FastRedisClient):
        super().__init__()
        self.redis = redis_client

    @staticmethod
    def _key(user_id: str) -> str:
        return f"ignored_senders:{user_id}"

    async def list_senders(self, user_id: str) -> frozenset[str]:
        return frozenset(await self.redis.smembers(self._key(user_id)))

    async def contains(self, user_id: str, email: str) -> bool:
        return await self.redis.sismember(self._key(user_id), normalize_email(email))

    async def add(self, user_id: str, email: str) -> bool:
        address = normalize_email(email)
        if not address:
            return False
        added = await self.redis.sadd(self._key(user_id), address)
        if added:
            await self.publish(user_id)
        return added

    async def remove(self, user_id: str, email: str) -> bool:
        removed = await self.redis.srem(self._key(user_id), normalize_email(email))
        if removed:
            await self.publish(user_id)
        return removed
