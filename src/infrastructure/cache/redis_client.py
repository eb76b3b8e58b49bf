# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for shared analytics result caching.

Wraps the redis-py async client with a connection pool and a key
namespace. Every key is stored under ``{key_prefix}:{key}`` so several
deployments can share one Redis database.

Example:
    from src.infrastructure.cache import init_redis, get_redis

    await init_redis(settings)

    redis = get_redis()
    await redis.set("students:2025-01-01:2025-02-01", payload, expire_seconds=300)
    payload = await redis.get("students:2025-01-01:2025-02-01")
"""

from typing import TYPE_CHECKING, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Module-level state
_redis_client: Optional["RedisClient"] = None


class RedisError(Exception):
    """Exception raised for Redis operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Redis error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class RedisClient:
    """Async Redis client scoped to the analytics key namespace.

    Values are stored as strings; callers serialize their own payloads.

    Example:
        client = RedisClient(settings)
        await client.connect()
        await client.set("summary:...", payload, expire_seconds=120)
        await client.delete_pattern("summary:*")
        await client.close()
    """

    def __init__(self, settings: "Settings", redis: Optional[Redis] = None) -> None:
        """Initialize the Redis client.

        Args:
            settings: Application settings containing Redis configuration.
            redis: Pre-built client, used instead of a pool when given.
        """
        self._settings = settings
        self._prefix = settings.redis.key_prefix
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis

    async def connect(self) -> None:
        """Create the Redis connection pool.

        Raises:
            RedisError: If connection fails.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)

            # Verify connection
            await self._redis.ping()
        except BaseRedisError as e:
            raise RedisError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    def key(self, key: str) -> str:
        """Build the namespaced key."""
        return f"{self._prefix}:{key}"

    async def set(self, key: str, value: str, expire_seconds: Optional[int] = None) -> None:
        """Set a key, optionally with an expiry.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            await redis.set(self.key(key), value, ex=expire_seconds)
        except BaseRedisError as e:
            raise RedisError(f"Failed to set key: {key}", e) from e

    async def get(self, key: str) -> Optional[str]:
        """Get a key, None if missing or expired.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            return await redis.get(self.key(key))
        except BaseRedisError as e:
            raise RedisError(f"Failed to get key: {key}", e) from e

    async def delete_pattern(self, pattern: str = "*") -> int:
        """Delete all namespaced keys matching a pattern.

        Args:
            pattern: Key pattern relative to the namespace.

        Returns:
            Number of keys deleted.

        Raises:
            RedisError: If the operation fails.
        """
        redis = self._ensure_connected()
        try:
            keys = [key async for key in redis.scan_iter(match=self.key(pattern))]
            if keys:
                return await redis.delete(*keys)
            return 0
        except BaseRedisError as e:
            raise RedisError(f"Failed to delete keys: {pattern}", e) from e

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            redis = self._ensure_connected()
            await redis.ping()
            return True
        except (RedisError, BaseRedisError):
            return False


async def init_redis(settings: "Settings") -> RedisClient:
    """Initialize the global Redis client.

    This should be called once at application startup.

    Raises:
        RedisError: If connection fails.
    """
    global _redis_client

    _redis_client = RedisClient(settings)
    await _redis_client.connect()
    return _redis_client


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def get_redis() -> RedisClient:
    """Get the global Redis client.

    Raises:
        RedisError: If Redis has not been initialized.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized. Call init_redis() first.")
    return _redis_client
