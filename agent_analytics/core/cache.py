"""
Short-lived result cache for aggregate queries.

Memoizes computed metrics by query key for a TTL window.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """A value plus whether it came from the cache."""
    value: T
    cache_hit: bool


@dataclass(frozen=True)
class _CacheEntry:
    value: Any
    expires_at: float  # Clock milliseconds


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class ResultCache:
    """In-process TTL cache keyed by logical query identity.

    Lookups and stores are individually locked, but the check, compute,
    store sequence is not atomic: two concurrent misses for the same key
    both compute and the later store wins. Failed computations are not
    cached.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """Initialize an empty cache.

        Args:
            clock: Millisecond clock; defaults to a monotonic clock
        """
        self._clock = clock or _monotonic_ms
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get_or_compute(self, key: str, ttl_ms: float, compute: Callable[[], T]) -> CacheResult[T]:
        """Return the cached value for key, computing and storing it on a miss.

        Args:
            key: Logical query identity
            ttl_ms: Lifetime of a freshly stored value in milliseconds
            compute: Produces the value on a miss; exceptions propagate

        Returns:
            CacheResult with the value and cache_hit flag
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.expires_at > now:
            logger.debug("Cache hit for %s", key)
            return CacheResult(value=entry.value, cache_hit=True)

        logger.debug("Cache miss for %s", key)
        value = compute()
        self.set(key, value, ttl_ms)
        return CacheResult(value=value, cache_hit=False)

    def set(self, key: str, value: Any, ttl_ms: float) -> None:
        """Store a value directly (also used by tests to seed entries)."""
        entry = _CacheEntry(value=value, expires_at=self._clock() + ttl_ms)
        with self._lock:
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
