"""
adrealm Lookup Cache

Size- and TTL-bounded memoization of user and group lookups, keyed by
(domain, principal, lookup strategy).

Concurrent requests for a key that is already being computed wait for
that computation instead of starting their own directory round trip.
A size or TTL of 0 disables the cache: every call computes, nothing is
stored.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

import attrs
import structlog

from adrealm.core.types import GroupLookupStrategy

logger = structlog.get_logger()

V = TypeVar("V")


@attrs.define(frozen=True, slots=True)
class CacheKey:
    """Cache key: domain and principal are case-insensitive."""

    domain: str = attrs.field(converter=str.lower)
    principal: str = attrs.field(converter=str.lower)
    strategy: GroupLookupStrategy


@attrs.define
class LookupCache(Generic[V]):
    """
    Single-flight, size- and TTL-bounded cache.

    Thread-safe.

    Example:
        cache = LookupCache(size=100, ttl=300)
        user = cache.get_or_compute(key, lambda: load_user(...))
    """

    size: int = 0
    ttl: float = 0

    clock: Callable[[], float] = time.monotonic

    # key -> (inserted_at, value), oldest first
    _entries: "OrderedDict[Any, Tuple[float, V]]" = attrs.Factory(OrderedDict)
    _inflight: Dict[Any, "Future[V]"] = attrs.Factory(dict)
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _hits: int = 0
    _misses: int = 0
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def enabled(self) -> bool:
        return self.size > 0 and self.ttl > 0

    def get_or_compute(
        self,
        key: Any,
        compute: Callable[[], V],
        store_if: Optional[Callable[[V], bool]] = None,
    ) -> V:
        """
        Return the cached value for ``key`` or compute it.

        Args:
            key: Hashable cache key
            compute: Produces the value on a miss
            store_if: Predicate deciding whether a computed value is kept
                (e.g. only successful lookups). Defaults to keeping all.

        Returns:
            The cached or freshly computed value. Concurrent callers of the
            same key during a computation all get the same value.

        Raises:
            Whatever ``compute`` raises; errors are never cached.
        """
        if not self.enabled:
            return compute()

        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)
            if entry is not None:
                inserted_at, value = entry
                if now - inserted_at < self.ttl:
                    self._hits += 1
                    return value
                del self._entries[key]

            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future
                self._misses += 1

        if not leader:
            self._logger.debug("cache_wait_inflight", key=str(key))
            return future.result()

        try:
            value = compute()
        except BaseException as e:
            with self._lock:
                del self._inflight[key]
            future.set_exception(e)
            raise

        with self._lock:
            del self._inflight[key]
            if store_if is None or store_if(value):
                self._store_locked(key, value)
        future.set_result(value)
        return value

    def _store_locked(self, key: Any, value: V) -> None:
        """Insert a value and enforce the size bound (must hold lock)."""
        self._entries.pop(key, None)
        self._entries[key] = (self.clock(), value)
        while len(self._entries) > self.size:
            evicted, _ = self._entries.popitem(last=False)
            self._logger.debug("cache_evicted", key=str(evicted))

    def invalidate(self, key: Any) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        with self._lock:
            now = self.clock()
            expired = [k for k, (at, _) in self._entries.items() if now - at >= self.ttl]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    @property
    def entry_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "enabled": self.enabled,
                "size": len(self._entries),
                "max_entries": self.size,
                "ttl_seconds": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "inflight": len(self._inflight),
            }
