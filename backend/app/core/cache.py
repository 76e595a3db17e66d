"""Key-value cache with per-entry TTL, backed by local memory or Redis.

Both backends serialise values with orjson so callers see identical
behaviour: what comes back from ``get`` is always a fresh JSON-decoded copy.
"""

import abc
import logging
import time
from collections.abc import Callable
from typing import Any

import orjson
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.errors import CacheError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30


class Cache(abc.ABC):
    """Async cache interface used by the ingest and ETA services."""

    @abc.abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abc.abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None: ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    async def exists(self, key: str) -> bool: ...

    async def sweep(self) -> int:
        """Drop expired entries. Backends with native expiry have nothing to do."""
        return 0

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCache(Cache):
    """In-process cache. Expiry is lazy on read plus a periodic ``sweep``.

    Every operation runs without awaiting, so it is atomic on the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (expires_at, serialised value)
        self._entries: dict[str, tuple[float, bytes]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return raw

    async def get(self, key: str) -> Any | None:
        raw = self._live(key)
        return None if raw is None else orjson.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, orjson.dumps(value))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def clear(self) -> None:
        self._entries.clear()

    async def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    async def close(self) -> None:
        self._entries.clear()


class RedisCache(Cache):
    """Shared cache on Redis, TTLs enforced by Redis itself."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=False))

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            raise CacheError(f"Cache read failed for {key}") from e
        return None if raw is None else orjson.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        try:
            await self._redis.set(key, orjson.dumps(value), px=max(1, int(ttl_seconds * 1000)))
        except RedisError as e:
            raise CacheError(f"Cache write failed for {key}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise CacheError(f"Cache delete failed for {key}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(key))
        except RedisError as e:
            raise CacheError(f"Cache lookup failed for {key}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            logger.exception("Redis ping failed")
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def create_cache(backend: str, redis_url: str) -> Cache:
    if backend == "redis":
        logger.info("Using Redis cache at %s", redis_url)
        return RedisCache.from_url(redis_url)
    if backend != "memory":
        raise ValueError(f"Unknown cache backend: {backend}")
    logger.info("Using in-memory cache")
    return MemoryCache()
