"""
Response Cache - Store.

============================================================
PURPOSE
============================================================
Short-lived key/value store that sits in front of the
exchange's rate-limited query endpoints.

- Per-entry TTL with lazy expiry on read
- Size bound with insertion-order eviction
- Tag grouping and key-pattern invalidation
- Hit/miss statistics

Callers use it read-through at the call site: get, fetch on
a miss, then set. Nothing here performs I/O and no operation
raises for a missing or expired key.

============================================================
CONCURRENCY
============================================================
All map mutation happens under one re-entrant lock. Nothing
awaits while holding it, so the store is safe to share
between asyncio tasks and threads alike.

============================================================
"""

import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Pattern, Union

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)


KeyMatcher = Union[str, Pattern, Callable[[str], bool]]

_MISSING = object()


# ============================================================
# ENTRY
# ============================================================

@dataclass(frozen=True)
class CacheEntry:
    """A single stored value."""

    key: str
    value: Any
    stored_at: float
    """Monotonic clock reading when the entry was written."""

    ttl: float
    """Lifetime in seconds."""

    tags: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


# ============================================================
# STATISTICS
# ============================================================

@dataclass
class CacheStats:
    """Cumulative counters since construction or the last reset."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return round(self.hits / total * 100, 2)


# ============================================================
# CACHE
# ============================================================

class ResponseCache:
    """
    TTL cache with size-bound, insertion-order eviction.

    Example:
        cache = ResponseCache(max_size=50, default_ttl=3.0, name="prices")
        cached = cache.get("prices:BTC-USDT-SWAP")
        if cached is None:
            cached = await fetch()
            cache.set("prices:BTC-USDT-SWAP", cached, tags=("prices",))
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 30.0,
        clock: Optional[ClockProtocol] = None,
        name: str = "cache",
    ):
        """
        Args:
            max_size: Maximum number of entries held at once
            default_ttl: Lifetime in seconds when set() is given none
            clock: Time source (defaults to the system clock)
            name: Label used in logs and stats
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock or SystemClock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    # ---------------------------------------------------------
    # READ
    # ---------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the stored value, or default on a miss.

        An expired entry counts as a miss and is removed.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return default

            if not entry.is_live(self._clock.monotonic()):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return default

            self._stats.hits += 1
            return entry.value

    def has(self, key: str) -> bool:
        """Check for a live entry without touching hit/miss counters."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.is_live(self._clock.monotonic()):
                del self._entries[key]
                self._stats.expirations += 1
                return False
            return True

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> List[str]:
        """Keys of live entries, oldest insertion first."""
        with self._lock:
            self._purge_expired()
            return list(self._entries.keys())

    # ---------------------------------------------------------
    # WRITE
    # ---------------------------------------------------------

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Store or replace an entry.

        A replaced key moves to the newest insertion position.
        When the cache is full and the key is new, expired entries
        are purged first and then the oldest entry is evicted.
        """
        lifetime = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock.monotonic()

            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._purge_expired(now)
                if len(self._entries) >= self.max_size:
                    evicted_key, _ = self._entries.popitem(last=False)
                    self._stats.evictions += 1
                    logger.debug(f"[{self.name}] evicted {evicted_key}")

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                stored_at=now,
                ttl=lifetime,
                tags=frozenset(tags),
            )
            self._stats.sets += 1

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value, ttl=ttl, tags=tags)
        return value

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    # ---------------------------------------------------------
    # INVALIDATION
    # ---------------------------------------------------------

    def invalidate(self, pattern: Optional[KeyMatcher] = None) -> int:
        """
        Remove every entry matching pattern.

        Args:
            pattern: One of
                - a string: exact key, or a tag carried by the entry
                - a compiled regex: searched against each key
                - a callable: predicate over the key
                - None: every entry

        Returns:
            Number of entries removed
        """
        with self._lock:
            if pattern is None:
                doomed = list(self._entries.keys())
            elif isinstance(pattern, str):
                doomed = [
                    key for key, entry in self._entries.items()
                    if key == pattern or pattern in entry.tags
                ]
            elif isinstance(pattern, re.Pattern):
                doomed = [key for key in self._entries if pattern.search(key)]
            elif callable(pattern):
                doomed = [key for key in self._entries if pattern(key)]
            else:
                logger.warning(
                    f"[{self.name}] unsupported invalidation pattern: {type(pattern).__name__}"
                )
                return 0

            for key in doomed:
                del self._entries[key]
            self._stats.invalidations += len(doomed)

        if doomed:
            logger.debug(f"[{self.name}] invalidated {len(doomed)} entries")
        return len(doomed)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry carrying any of the given tags."""
        wanted = frozenset(tags)
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if entry.tags & wanted]
            for key in doomed:
                del self._entries[key]
            self._stats.invalidations += len(doomed)
        return len(doomed)

    def clear(self) -> None:
        """Drop all entries. Statistics are kept."""
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Purge expired entries. Returns the number removed."""
        with self._lock:
            return self._purge_expired()

    def _purge_expired(self, now: Optional[float] = None) -> int:
        if now is None:
            now = self._clock.monotonic()
        expired = [key for key, entry in self._entries.items() if not entry.is_live(now)]
        for key in expired:
            del self._entries[key]
        self._stats.expirations += len(expired)
        return len(expired)

    # ---------------------------------------------------------
    # STATISTICS
    # ---------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of counters plus current size."""
        with self._lock:
            return {
                "name": self.name,
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "sets": self._stats.sets,
                "evictions": self._stats.evictions,
                "expirations": self._stats.expirations,
                "invalidations": self._stats.invalidations,
                "current_size": len(self._entries),
                "max_size": self.max_size,
                "hit_rate": self._stats.hit_rate,
            }

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = CacheStats()
