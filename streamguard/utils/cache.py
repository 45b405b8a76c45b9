"""
StreamGuard - Cache Utilities
=============================

TTL cache used to avoid re-classifying identical messages.
"""

from datetime import datetime, timedelta
from typing import Dict, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    A simple TTL-based cache with oldest-first eviction.

    Safe for single-threaded async use: no method awaits, so no two
    coroutines can interleave inside one call.
    """

    def __init__(self, ttl: timedelta, max_size: int = 100):
        """
        Initialize the TTL cache.

        Args:
            ttl: Time-to-live for cached items.
            max_size: Maximum number of items to store.
        """
        self._ttl = ttl
        self._max_size = max_size
        self._cache: Dict[K, Tuple[V, datetime]] = {}

    def get(self, key: K) -> Optional[V]:
        """
        Get an item from the cache if it exists and hasn't expired.

        Returns:
            The cached value or None if not found/expired.
        """
        entry = self._cache.get(key)
        if entry is None:
            return None

        value, cached_at = entry
        if datetime.now() - cached_at > self._ttl:
            self._cache.pop(key, None)
            return None

        return value

    def set(self, key: K, value: V) -> None:
        """Set an item in the cache, evicting the oldest entry at capacity."""
        if len(self._cache) >= self._max_size and key not in self._cache:
            self._evict_oldest()

        self._cache[key] = (value, datetime.now())

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
        del self._cache[oldest_key]

    def cleanup_expired(self) -> int:
        """
        Remove all expired items from the cache.

        Returns:
            Number of items removed.
        """
        now = datetime.now()
        expired_keys = [
            k for k, (_, cached_at) in self._cache.items()
            if now - cached_at > self._ttl
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)


__all__ = ["TTLCache"]
