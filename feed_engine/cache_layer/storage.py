"""Durable storage providers for the adaptive cache.

The durable tier only needs a namespaced string get/set/delete interface.
``RedisDurableStorage`` backs it with Redis; ``InMemoryDurableStorage`` is a
process-local stand-in used when no Redis is configured and in tests.
"""

import logging
from typing import Dict, Optional, Protocol

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from feed_engine.exceptions import StorageError


logger = logging.getLogger(__name__)


class DurableStorage(Protocol):
    """Namespaced string key/value store used by the durable cache tier."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        ...


class InMemoryDurableStorage:
    """Dictionary-backed storage provider.

    Attributes:
        namespace: Prefix applied to every key
    """

    def __init__(self, namespace: str = "feed") -> None:
        self.namespace = namespace
        self._data: Dict[str, str] = {}

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        self._data[self._key(key)] = value

    async def delete(self, key: str) -> None:
        self._data.pop(self._key(key), None)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._data)


class RedisDurableStorage:
    """Redis-backed storage provider.

    Any ``RedisError`` (connection loss, timeouts, OOM or read-only replica
    replies) is wrapped in ``StorageError`` so the cache can degrade to
    memory-only operation.

    Attributes:
        redis_client: Async Redis client instance
        namespace: Prefix applied to every key
    """

    def __init__(
        self,
        redis_host: str = "localhost",
        redis_port: int = 6379,
        redis_db: int = 0,
        redis_password: Optional[str] = None,
        namespace: str = "feed",
        max_connections: int = 20,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
    ) -> None:
        """Initialize the Redis storage provider.

        Args:
            redis_host: Redis server hostname
            redis_port: Redis server port
            redis_db: Redis database number
            redis_password: Optional Redis password
            namespace: Key prefix for everything this provider writes
            max_connections: Maximum number of Redis connections
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
        """
        self.redis_client: Redis = redis.Redis(
            host=redis_host,
            port=redis_port,
            db=redis_db,
            password=redis_password,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            decode_responses=True,
        )
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            await self.redis_client.ping()
            return True
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis_client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis_client.set(self._key(key), value)
        except RedisError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis_client.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis_client.close()
