# leadflow/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.repositories.base import StoreError

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled async Redis client. Only the set operations the ignored-sender store needs."""

    def __init__(self, client=None):
        self.pool = None
        self.client = client
        self._initialized = client is not None

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL is required when IGNORED_SENDER_BACKEND=redis")

        try:
            logger.info("Attempting Redis connection", url_preview=settings.REDIS_URL[:30] + "...")

            self.pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    # Set operations raise StoreError: a lost write here would silently un-ignore a sender

    async def sadd(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.sadd(key, member) > 0
        except Exception as e:
            logger.error("Redis SADD failed", key=key[:30], error=str(e))
            raise StoreError(f"Redis SADD failed: {e}", operation="sadd") from e

    async def srem(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.srem(key, member) > 0
        except Exception as e:
            logger.error("Redis SREM failed", key=key[:30], error=str(e))
            raise StoreError(f"Redis SREM failed: {e}", operation="srem") from e

    async def smembers(self, key: str) -> set[str]:
        try:
            await self._ensure_initialized()
            return set(await self.client.smembers(key))
        except Exception as e:
            logger.error("Redis SMEMBERS failed", key=key[:30], error=str(e))
            raise StoreError(f"Redis SMEMBERS failed: {e}", operation="smembers") from e

    async def sismember(self, key: str, member: str) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.sismember(key, member))
        except Exception as e:
            logger.error("Redis SISMEMBER failed", key=key[:30], error=str(e))
            raise StoreError(f"Redis SISMEMBER failed: {e}", operation="sismember") from e


# Global instance
fast_redis = FastRedisClient()
