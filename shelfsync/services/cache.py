"""
In-process TTL cache for catalog snapshots.

Entries expire lazily: a read checks the deadline before returning and drops
the entry if it has passed. There is no background eviction thread; callers
with an unbounded key space can call sweep() periodically.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: Hashable
    value: Any
    expires_at: float


@dataclass(frozen=True)
class CacheResult:
    hit: bool
    value: Any | None = None


_MISS = CacheResult(hit=False)


class TTLCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> CacheResult:
        entry = self._entries.get(key)
        if entry is None:
            return _MISS
        if self._clock() >= entry.expires_at:
            # Only drop the slot if nobody replaced it since we looked
            if self._entries.get(key) is entry:
                del self._entries[key]
            return _MISS
        return CacheResult(hit=True, value=entry.value)

    def set(self, key: Hashable, value: Any, ttl_ms: float) -> None:
        """Store *value* under *key*, replacing any prior entry.

        A ttl_ms of zero or less is accepted; the entry is a miss on next read.
        """
        expires_at = self._clock() + ttl_ms / 1000.0
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at)

    def invalidate(self, key: Hashable) -> bool:
        """Drop *key*. Returns True if an entry (live or expired) was removed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        """Number of stored entries, including expired ones not yet swept."""
        return len(self._entries)

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in list(self._entries.items()) if now >= e.expires_at]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            logger.debug("Cache sweep dropped %d expired entries", len(expired))
        return len(expired)


# Process-wide snapshot store shared by request handlers
snapshot_cache = TTLCache()
