"""In-process TTL caches for room listings and live room status."""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    """String-keyed ``cachetools.TTLCache`` wrapper.

    Room keys are namespaced (``room-list:<organization>:<filters>``,
    ``room-status:<room>``) so one organization's listings can be dropped
    together with ``pop_prefix``.
    """

    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._entries: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[T]:
        return self._entries.get(key)

    def set(self, key: str, value: T) -> None:
        self._entries[key] = value

    def pop(self, key: str) -> Optional[T]:
        return self._entries.pop(key, None)

    def pop_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``; returns how many were removed."""
        stale = [key for key in list(self._entries) if key.startswith(prefix)]
        for key in stale:
            self._entries.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
