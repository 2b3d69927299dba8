"""In-memory response cache with TTL."""

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any, Generic, NamedTuple, TypeVar

from ytcatalog.logging_config import get_logger

logger = get_logger("cache")

T = TypeVar("T")

DEFAULT_PURGE_INTERVAL_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 10_000


class CacheEntry(NamedTuple, Generic[T]):
    """Cached value with its absolute expiry (clock seconds)."""

    value: T
    expires_at: float


def make_video_key(video_id: str) -> str:
    """Cache key for per-video metadata."""
    return f"video:{video_id}"


class TTLCache(Generic[T]):
    """
    Thread-safe key/value cache with per-entry expiry.

    One instance per concern (video metadata, channel results) so that
    differently shaped values never share a key space. Cache failures are
    logged and reported as misses; they never propagate to callers.
    """

    def __init__(
        self,
        name: str,
        default_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        purge_interval_seconds: float = DEFAULT_PURGE_INTERVAL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        self.name = name
        self.default_ttl_seconds = default_ttl_seconds
        self.purge_interval_seconds = purge_interval_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._next_purge = clock() + purge_interval_seconds
        self._purge_above = max_entries

    def get(self, key: Hashable) -> T | None:
        """Get a cached value. Returns None if missing or expired."""
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    return None
                if self._clock() >= entry.expires_at:
                    del self._entries[key]
                    return None
                return entry.value
        except Exception as exc:
            logger.warning(f"{self.name} cache read failed, treating as miss: {exc}")
            return None

    def set(self, key: Hashable, value: T, ttl_seconds: float | None = None) -> None:
        """Store a value with TTL. Overwrites existing entries."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        try:
            with self._lock:
                now = self._clock()
                self._entries[key] = CacheEntry(value, now + ttl)
                # Full scans only on the interval or when the size threshold is crossed
                if now >= self._next_purge or len(self._entries) > self._purge_above:
                    self._purge(now)
        except Exception as exc:
            logger.warning(f"{self.name} cache write failed, entry dropped: {exc}")

    def purge_expired(self) -> int:
        """Drop every expired entry now. Returns count deleted."""
        with self._lock:
            return self._purge(self._clock())

    def _purge(self, now: float) -> int:
        """Caller holds the lock."""
        expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for expired_key in expired:
            del self._entries[expired_key]
        self._next_purge = now + self.purge_interval_seconds
        # Live entries above the threshold would otherwise rescan on every set
        self._purge_above = max(self.max_entries, 2 * len(self._entries))
        if expired:
            logger.debug(f"{self.name} cache purged {len(expired)} expired entries")
        return len(expired)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        """Delete all entries. Returns count deleted."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._purge_above = self.max_entries
            return count

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            now = self._clock()
            total = len(self._entries)
            expired = sum(1 for entry in self._entries.values() if entry.expires_at <= now)
        return {
            "name": self.name,
            "total_entries": total,
            "expired_entries": expired,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
