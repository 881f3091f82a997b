"""Simple TTL cache helpers for frequently accessed data."""
from __future__ import annotations

from typing import Callable, Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def get_or_load(self, key: str, loader: Callable[[], Optional[T]]) -> Optional[T]:
        """Return the cached value, loading and storing it on a miss. ``None`` is never cached."""
        value = self._cache.get(key)
        if value is None:
            value = loader()
            if value is not None:
                self._cache[key] = value
        return value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()


def room_key(room_id: int) -> str:
    return f"room:{room_id}"
