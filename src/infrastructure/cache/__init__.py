# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cache infrastructure.

This package provides the Redis client and the analytics result caches.
Results are keyed by namespace and time range; the in-memory backend is
used unless Redis is enabled.

Example:
    from src.infrastructure.cache import InMemoryResultCache, RedisResultCache, init_redis

    cache = InMemoryResultCache()

    # or, shared between workers
    client = await init_redis(settings)
    cache = RedisResultCache(client)
"""

from src.infrastructure.cache.redis_client import (
    RedisClient,
    RedisError,
    close_redis,
    get_redis,
    init_redis,
)
from src.infrastructure.cache.result_cache import (
    InMemoryResultCache,
    RedisResultCache,
    ResultCache,
    cache_key,
)

__all__ = [
    "InMemoryResultCache",
    "RedisClient",
    "RedisError",
    "RedisResultCache",
    "ResultCache",
    "cache_key",
    "close_redis",
    "get_redis",
    "init_redis",
]
