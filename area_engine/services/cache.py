"""
Key-value cache backends with per-key TTL.

Holds detector watermarks and the short-lived "active binding" summaries.
Values are plain strings; callers JSON-encode structured values themselves.

RedisCache   - shared, survives engine restarts (production)
MemoryCache  - process-local, used when REDIS_URL is empty and in tests
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as aioredis

from area_engine.core.config import Settings
from area_engine.core.logging import get_logger

log = get_logger(__name__)


class KeyValueCache(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored string, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store *value*; *ttl* in seconds, None for no expiry."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        return None


class MemoryCache(KeyValueCache):
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        # key -> (value, monotonic deadline or None)
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        deadline = self._clock() + ttl if ttl else None
        self._data[key] = (value, deadline)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisCache(KeyValueCache):
    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self._client.set(key, value, ex=ttl)
        else:
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def build_cache(settings: Settings) -> KeyValueCache:
    if settings.REDIS_URL:
        log.info("cache_backend_selected", backend="redis")
        return RedisCache.from_url(settings.REDIS_URL)
    log.warning(
        "cache_backend_selected",
        backend="memory",
        note="watermarks will not survive a restart",
    )
    return MemoryCache()
