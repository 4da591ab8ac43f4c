"""TTL cache for room listings.

Only room rows are cached. Slot grids and availability depend on bookings and
are always computed on read.
"""
from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class ListingCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    @staticmethod
    def key_for(prefix: str, **filters: Any) -> str:
        parts = [f"{name}={filters[name]}" for name in sorted(filters) if filters[name] is not None]
        return f"{prefix}:" + "&".join(parts)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def invalidate(self) -> None:
        """Drop every listing; called after any room write."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
