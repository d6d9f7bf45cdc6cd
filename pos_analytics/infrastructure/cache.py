"""Time-boxed report cache, owned by the report layer and invalidated on writes"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ReportCache:
    """
    Key -> value store whose entries expire `ttl_seconds` after being set.

    Expired entries are evicted lazily on read, or in bulk via purge_expired().
    A ttl of 0 or less disables caching (every lookup misses).

    Usage:
        cache = ReportCache(ttl_seconds=60)
        cache.set(("shop", window), rows)
        rows = cache.get(("shop", window))
    """

    def __init__(self, ttl_seconds: float, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def _expired(self, entry: _Entry) -> bool:
        return self._clock() - entry.stored_at >= self.ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        """Cached value, or None when missing or expired"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry; returns whether it was present"""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Evict every expired entry; returns how many were removed"""
        expired = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in expired:
            del self._entries[key]
        return len(expired)
