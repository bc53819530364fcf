"""
Watermark Store: one "last seen" marker per (provider, user, resource).

Values:
  None   - never observed (key absent)
  ""     - observed an empty source (sentinel)
  other  - provider marker of the latest item seen (timestamp-like string)

Read-compare-write is not atomic. Keys are disjoint per binding, so two
writers on one key means two bindings watch the same resource for the same
user: last write wins and a trigger may be missed or duplicated.
"""
from __future__ import annotations

from typing import Optional

from area_engine.services.cache import KeyValueCache

EMPTY_SOURCE = ""


def watermark_key(provider: str, user_id: str, resource: str) -> str:
    return f"watermark:{provider}:{user_id}:{resource}"


class WatermarkStore:
    def __init__(self, cache: KeyValueCache, ttl: Optional[int] = None) -> None:
        self._cache = cache
        self._ttl = ttl

    async def get(self, provider: str, user_id: str, resource: str) -> Optional[str]:
        return await self._cache.get(watermark_key(provider, user_id, resource))

    async def set(self, provider: str, user_id: str, resource: str, marker: str) -> None:
        await self._cache.set(watermark_key(provider, user_id, resource), marker, self._ttl)
