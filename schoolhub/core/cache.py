"""
Cache-aside accessors — typed key/value caches with per-entry TTL.

Provides:
    • Cache protocol (async get / set / delete)
    • MemoryCache   — in-process, lock-protected, monotonic expiry
    • RedisCache    — shared Redis backend, JSON via the value's pydantic type
    • build_cache   — pick the backend from the resolved Config
    • purge_periodically — background sweep of expired memory entries

Each cache instance is bound to one value type, so readers never need a
runtime type check on what comes back.

Usage:
    from schoolhub.core.cache import MemoryCache

    cache: MemoryCache[School] = MemoryCache()
    await cache.set("school.example.com", school, ttl=60)
    value, found = await cache.get("school.example.com")
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, Protocol, Tuple, Type, TypeVar

import redis.asyncio as aioredis
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from schoolhub.core.config import Config
from schoolhub.core.errors import CacheError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cache(Protocol[T]):
    """What the services depend on. Misses are (None, False), never errors."""

    async def get(self, key: str) -> Tuple[Optional[T], bool]:
        ...

    async def set(self, key: str, value: T, ttl: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# In-process cache
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


class MemoryCache(Generic[T]):
    """
    Dict-backed cache guarded by a single lock.

    Values are deep-copied on the way in and on the way out: a caller
    mutating what it got back cannot change what the next caller sees.
    The lock is a threading.Lock so the cache is safe across threads as
    well as across tasks on one loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, _Entry[T]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def get(self, key: str) -> Tuple[Optional[T], bool]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None, False
            value = entry.value
        return copy.deepcopy(value), True

    async def set(self, key: str, value: T, ttl: int) -> None:
        if ttl <= 0:
            await self.delete(key)
            return
        entry = _Entry(value=copy.deepcopy(value), expires_at=self._clock() + ttl)
        with self._lock:
            self._entries[key] = entry

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


async def purge_periodically(cache: MemoryCache, interval: float) -> None:
    """Sweep `cache` every `interval` seconds until cancelled."""
    logger.debug("Cache purge scheduled every %ss", interval)
    while True:
        await asyncio.sleep(interval)
        cache.purge_expired()


# ═══════════════════════════════════════════════════════════════════════════
# Redis cache
# ═══════════════════════════════════════════════════════════════════════════

class RedisCache(Generic[T]):
    """
    Redis-backed cache for one value type.

    Expiry is enforced by Redis (SET ... EX). Any Redis failure surfaces as
    CacheError; an entry that no longer decodes as the value type is
    treated as a miss.
    """

    def __init__(self, client: aioredis.Redis, value_type: Type[T], prefix: str = ""):
        self._client = client
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Tuple[Optional[T], bool]:
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as e:
            raise CacheError(f"Cache GET failed: {e}", key=key) from e
        if raw is None:
            return None, False
        try:
            return self._adapter.validate_json(raw), True
        except PydanticValidationError:
            logger.warning("Discarding undecodable cache entry %s", self._key(key))
            return None, False

    async def set(self, key: str, value: T, ttl: int) -> None:
        payload = self._adapter.dump_json(value)
        try:
            if ttl <= 0:
                await self._client.delete(self._key(key))
            else:
                await self._client.set(self._key(key), payload, ex=ttl)
        except RedisError as e:
            raise CacheError(f"Cache SET failed: {e}", key=key) from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as e:
            raise CacheError(f"Cache DELETE failed: {e}", key=key) from e

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis connection closed")


def build_cache(config: Config, value_type: Type[T], prefix: str = "") -> Cache[T]:
    """Redis when cache.redis_url is configured, in-process memory otherwise."""
    if config.cache.redis_url:
        client = aioredis.from_url(config.cache.redis_url)
        logger.info("Cache backend: redis (prefix=%r)", prefix)
        return RedisCache(client, value_type, prefix=prefix)
    logger.info("Cache backend: memory")
    return MemoryCache()
