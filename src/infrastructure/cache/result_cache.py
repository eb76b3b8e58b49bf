# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Result caches for computed analytics.

Entries are keyed by ``(namespace, from, to)``: the namespace names the
kind of result ("students", "alerts", ...) and the time range bounds are
part of the key, so different windows never share an entry. Every entry
carries its own TTL.

Two backends are provided:

- InMemoryResultCache: process-local dict, used by default and in tests.
- RedisResultCache: shared across workers, values serialized with a
  pydantic TypeAdapter.

Example:
    cache = InMemoryResultCache()
    await cache.set("students", time_range, result, ttl_seconds=300)
    cached = await cache.get("students", time_range, StudentResult)
    await cache.invalidate("students")
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Protocol

from pydantic import TypeAdapter, ValidationError

from src.infrastructure.cache.redis_client import RedisClient, RedisError
from src.utils.datetime import utc_now

if TYPE_CHECKING:
    from src.domains.analytics.schemas import TimeRange

logger = logging.getLogger(__name__)


class ResultCache(Protocol):
    """Cache contract consumed by the analytics service."""

    async def get(self, namespace: str, time_range: "TimeRange", result_type: Any) -> Any | None:
        ...

    async def set(
        self,
        namespace: str,
        time_range: "TimeRange",
        value: Any,
        ttl_seconds: float,
        result_type: Any = None,
    ) -> None:
        ...

    async def invalidate(self, namespace: str | None = None) -> int:
        ...


def cache_key(namespace: str, time_range: "TimeRange") -> str:
    """Flat string key for a namespaced time range."""
    return f"{namespace}:{time_range.from_.isoformat()}:{time_range.to.isoformat()}"


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: datetime


class InMemoryResultCache:
    """Process-local result cache.

    Values are stored as-is; results are frozen models so sharing them
    between callers is safe. Expired entries are dropped on read and on
    every write.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._entries: dict[tuple[str, datetime, datetime], _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(
        self,
        namespace: str,
        time_range: "TimeRange",
        result_type: Any = None,
    ) -> Any | None:
        key = (namespace, time_range.from_, time_range.to)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    async def set(
        self,
        namespace: str,
        time_range: "TimeRange",
        value: Any,
        ttl_seconds: float,
        result_type: Any = None,
    ) -> None:
        if ttl_seconds <= 0:
            return
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._entries[(namespace, time_range.from_, time_range.to)] = _Entry(
            value=value,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    async def invalidate(self, namespace: str | None = None) -> int:
        """Drop entries of one namespace, or all entries when None.

        Returns:
            Number of entries removed.
        """
        if namespace is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        keys = [key for key in self._entries if key[0] == namespace]
        for key in keys:
            del self._entries[key]
        return len(keys)


class RedisResultCache:
    """Result cache shared through Redis.

    A Redis failure never fails an analytics query: reads degrade to a
    miss and writes are skipped, both with a warning.
    """

    def __init__(self, client: RedisClient) -> None:
        self._client = client
        self._adapters: dict[Any, TypeAdapter[Any]] = {}

    def _adapter(self, result_type: Any) -> TypeAdapter[Any]:
        adapter = self._adapters.get(result_type)
        if adapter is None:
            adapter = TypeAdapter(result_type)
            self._adapters[result_type] = adapter
        return adapter

    async def get(self, namespace: str, time_range: "TimeRange", result_type: Any) -> Any | None:
        key = cache_key(namespace, time_range)
        try:
            payload = await self._client.get(key)
        except RedisError as e:
            logger.warning("Result cache read failed for %s: %s", key, e)
            return None
        if payload is None:
            return None
        try:
            return self._adapter(result_type).validate_json(payload)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry %s: %s", key, e)
            return None

    async def set(
        self,
        namespace: str,
        time_range: "TimeRange",
        value: Any,
        ttl_seconds: float,
        result_type: Any = None,
    ) -> None:
        if ttl_seconds <= 0:
            return
        key = cache_key(namespace, time_range)
        adapter = self._adapter(result_type if result_type is not None else type(value))
        payload = adapter.dump_json(value).decode()
        try:
            await self._client.set(key, payload, expire_seconds=max(1, int(ttl_seconds)))
        except RedisError as e:
            logger.warning("Result cache write failed for %s: %s", key, e)

    async def invalidate(self, namespace: str | None = None) -> int:
        pattern = "*" if namespace is None else f"{namespace}:*"
        try:
            return await self._client.delete_pattern(pattern)
        except RedisError as e:
            logger.warning("Result cache invalidation failed for %s: %s", pattern, e)
            return 0
