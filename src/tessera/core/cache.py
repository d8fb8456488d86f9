"""
Cache collaborator.

The record mappers use a cache only for expensive aggregates (the pagination
row count). Two backends are provided:

- MemoryCache: process-local, read without locking, locked briefly on write
- RedisCache: shared across processes, values stored as JSON
"""

import asyncio
import inspect
import json
import logging
import time
from typing import Any, Awaitable, Callable, Protocol

import redis.asyncio as redis
from redis.exceptions import WatchError

from tessera.core.config import Settings

logger = logging.getLogger(__name__)

Producer = Callable[[], Any | Awaitable[Any]]


async def _produce(producer: Producer) -> Any:
    value = producer()
    if inspect.isawaitable(value):
        value = await value
    return value


class Cache(Protocol):
    async def remember(self, key: str, ttl: int, producer: Producer) -> Any: ...

    async def delete(self, key: str) -> None: ...


class MemoryCache:
    """
    In-process cache with per-key expiry.

    Every ``delete`` bumps the key's generation and every ``clear`` bumps the
    cache-wide epoch. A value produced by ``remember`` is stored only if
    neither moved while it was being produced.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._store: dict[str, tuple[float, Any]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = asyncio.Lock()
        self._clock = clock

    def _get(self, key: str) -> tuple[bool, Any]:
        entry = self._store.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if expires_at <= self._clock():
            return False, None
        return True, value

    def _version(self, key: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    async def remember(self, key: str, ttl: int, producer: Producer) -> Any:
        """Return the cached value for key, producing and storing it on a miss."""
        hit, value = self._get(key)
        if hit:
            return value

        version = self._version(key)
        value = await _produce(producer)
        async with self._lock:
            if self._version(key) == version:
                self._store[key] = (self._clock() + ttl, value)
        return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            self._store.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._epoch += 1
            self._generations.clear()
            self._store.clear()

    async def close(self) -> None:
        await self.clear()


class RedisCache:
    """
    Redis-backed cache shared by all API processes.

    Each key has a version counter next to it. ``delete`` increments the
    version, and ``remember`` stores a produced value under WATCH on the
    version so a concurrent delete aborts the write.
    """

    def __init__(self, client: redis.Redis, prefix: str = "tessera:"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url))

    def _version_key(self, full_key: str) -> str:
        return f"{full_key}:version"

    async def remember(self, key: str, ttl: int, producer: Producer) -> Any:
        full_key = self._prefix + key
        raw = await self._client.get(full_key)
        if raw is not None:
            return json.loads(raw)

        version_key = self._version_key(full_key)
        version = await self._client.get(version_key)
        value = await _produce(producer)

        async with self._client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(version_key)
                if await pipe.get(version_key) != version:
                    return value
                pipe.multi()
                pipe.set(full_key, json.dumps(value), ex=max(1, ttl))
                await pipe.execute()
            except WatchError:
                logger.debug(f"Cache key {full_key} invalidated while producing; not stored")
        return value

    async def delete(self, key: str) -> None:
        full_key = self._prefix + key
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(self._version_key(full_key))
            pipe.delete(full_key)
            await pipe.execute()

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(settings: Settings) -> MemoryCache | RedisCache:
    """Build the cache backend named by ``settings.cache_url``."""
    if settings.cache_url.startswith("memory://"):
        logger.info("Using in-process memory cache")
        return MemoryCache()
    logger.info("Using Redis cache")
    return RedisCache.from_url(settings.cache_url)
