"""TTL cache of parsed index snapshots, one per ecosystem and architecture."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

from upkg.common.cancellation import CancelToken, check
from upkg.common.logging_utils import extra_context, is_debug_enabled, Timer
from upkg.constants import Constants
from upkg.exceptions import FormatError, NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with TTL."""

    value: T
    expires_at: float
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        return (now if now is not None else time.time()) > self.expires_at

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.created_at


class IndexCache(Generic[T]):
    """Time-boxed snapshots of parsed indexes.

    Readers take the current entry without locking; a refresh runs under a
    lock (check, load, replace) and swaps a new entry in, so concurrent
    callers never observe a half-built snapshot and only one of them loads.

    When a refresh fails with FormatError or NetworkError, the previous
    snapshot keeps serving as long as it is younger than ``max_stale``; the
    next access retries the refresh.
    """

    def __init__(
        self,
        default_ttl: float = Constants.INDEX_CACHE_TTL_SEC,
        max_stale: float = Constants.INDEX_CACHE_MAX_STALE_SEC,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the index cache.

        Args:
            default_ttl: Seconds a snapshot is served before a refresh.
            max_stale: Seconds a snapshot may keep serving after failed refreshes.
            clock: Time source; injectable for tests.
        """
        self._default_ttl = default_ttl
        self._max_stale = max_stale
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._refreshes = 0
        self._stale_hits = 0

    def get(self, key: Hashable) -> Optional[T]:
        """Return the fresh snapshot for ``key`` or None."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    def put(self, key: Hashable, value: T, ttl: Optional[float] = None) -> None:
        now = self._clock()
        effective_ttl = ttl if ttl is not None else self._default_ttl
        self._entries[key] = CacheEntry(value=value, expires_at=now + effective_ttl, created_at=now)

    def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], T],
        *,
        cancel: Optional[CancelToken] = None,
        force: bool = False,
    ) -> T:
        """Return a fresh snapshot, loading it when missing or expired.

        Args:
            key: Cache key, conventionally ``(ecosystem, arch)``.
            loader: Builds a new snapshot; may raise FormatError/NetworkError.
            cancel: Checked before loading.
            force: Ignore freshness and reload.

        Returns:
            The new snapshot, or the previous one when the refresh failed and
            it is still within ``max_stale``.
        """
        if not force:
            value = self.get(key)
            if value is not None:
                return value

        with self._lock:
            # another caller may have refreshed while we waited
            if not force:
                value = self.get(key)
                if value is not None:
                    return value

            check(cancel, "index refresh")
            previous = self._entries.get(key)
            with Timer() as t:
                try:
                    value = loader()
                except (FormatError, NetworkError) as exc:
                    now = self._clock()
                    if previous is not None and previous.age(now) <= self._max_stale:
                        self._stale_hits += 1
                        logger.warning(
                            "Index refresh for %s failed (%s); serving snapshot from %d s ago",
                            key, exc, int(previous.age(now)),
                        )
                        return previous.value
                    raise
            self.put(key, value)
            self._refreshes += 1
            if is_debug_enabled(logger):
                logger.debug(
                    "Index refreshed",
                    extra=extra_context(
                        event="index_refresh",
                        component="index_cache",
                        target=str(key),
                        duration_ms=t.duration_ms(),
                    ),
                )
            return value

    def invalidate(self, key: Hashable) -> None:
        """Drop the snapshot for ``key``; the next access reloads."""
        with self._lock:
            self._entries.pop(key, None)

    def expire(self, key: Hashable) -> None:
        """Mark the snapshot stale but keep it as a fallback."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.expires_at = self._clock() - 1

    def clear(self) -> None:
        """Clear all cached snapshots."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self._clock()
        expired_count = sum(1 for e in self._entries.values() if e.is_expired(now))
        return {
            "total_entries": len(self._entries),
            "expired_entries": expired_count,
            "active_entries": len(self._entries) - expired_count,
            "refreshes": self._refreshes,
            "stale_hits": self._stale_hits,
            "default_ttl": self._default_ttl,
            "max_stale": self._max_stale,
        }
