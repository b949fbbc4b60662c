"""
Redis-backed key/value store for persisted usage state.

Used when the tracker runs server-side rather than on a device:
- Pending usage events survive process restarts
- Stats snapshots are shared between workers
- All keys carry a configurable prefix
"""

import logging

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from .base import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """
    Redis implementation of ``KeyValueStore``.

    Values are stored as plain strings (callers serialise JSON themselves).
    Every Redis failure is re-raised as ``StorageError``.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        key_prefix: str = "rt:usage:",
        max_connections: int = 10,
    ):
        """
        Args:
            url: Server to connect to on ``initialize``
            key_prefix: Namespace prepended to every usage key
            max_connections: Pool size shared by queue and snapshot writes
        """
        self.url = url
        self.key_prefix = key_prefix
        self.max_connections = max_connections

        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None
        self._initialized = False

    async def initialize(self) -> None:
        """Connect and verify the server answers; a no-op once connected."""
        if self._initialized:
            return

        pool = ConnectionPool.from_url(self.url, max_connections=self.max_connections, decode_responses=True)
        self._pool, self._redis = pool, Redis(connection_pool=pool)

        try:
            await self._redis.ping()
        except Exception as e:
            logger.error(f"Usage store cannot reach Redis at {self.url}: {e}")
            await self._release()
            raise StorageError(f"Redis unavailable at {self.url}: {e}") from e

        self._initialized = True
        logger.info(f"Usage store connected to Redis at {self.url} (prefix={self.key_prefix!r})")

    async def close(self) -> None:
        await self._release()

    async def _release(self) -> None:
        redis, pool = self._redis, self._pool
        self._redis = self._pool = None
        self._initialized = False

        if redis is not None:
            await redis.aclose()
        if pool is not None:
            await pool.aclose()

    def _key(self, key: str) -> str:
        return self.key_prefix + key

    def _client(self) -> Redis:
        if not self._initialized or not self._redis:
            raise StorageError("RedisKeyValueStore not initialized")
        return self._redis

    async def get(self, key: str) -> str | None:
        client = self._client()
        try:
            return await client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Redis get failed for key {key}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        client = self._client()
        try:
            await client.set(self._key(key), value)
        except RedisError as e:
            raise StorageError(f"Redis set failed for key {key}: {e}") from e

    async def delete(self, key: str) -> None:
        client = self._client()
        try:
            await client.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Redis delete failed for key {key}: {e}") from e
