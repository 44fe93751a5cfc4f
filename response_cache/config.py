"""
Response Cache - Configuration and Registry.

============================================================
PURPOSE
============================================================
TTL and size presets per data domain, and the registry that
owns one ResponseCache per domain.

The registry is built once at process start and handed to
whatever needs it. Its lifetime is the process lifetime;
nothing here is a module-level singleton.

TTLs are deliberately short: a few seconds is enough to absorb
dashboard polling bursts without holding stale prices or
positions across a trading decision.

============================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from core.clock import ClockProtocol

from .cache import ResponseCache


# ============================================================
# PRESETS
# ============================================================

@dataclass
class CacheConfig:
    """TTLs (seconds) and entry limits for each cache domain."""

    prices_ttl: float = 3.0
    """Ticker prices move fast; keep them briefly."""

    positions_ttl: float = 5.0
    """Open positions."""

    account_ttl: float = 3.0
    """
    Balances and account summaries. The engine stores none itself;
    the route layer keeps them in the general cache under TAG_ACCOUNT
    with this TTL, and trading events drop them.
    """

    default_ttl: float = 30.0
    """Anything stored in the general cache without an explicit TTL."""

    prices_max_size: int = 50
    positions_max_size: int = 20
    general_max_size: int = 200

    @classmethod
    def for_testing(cls) -> "CacheConfig":
        """Small caches so eviction paths are easy to reach."""
        return cls(prices_max_size=4, positions_max_size=2, general_max_size=8)


# ============================================================
# REGISTRY
# ============================================================

@dataclass
class CacheRegistry:
    """One cache per domain, constructed explicitly and injected."""

    prices: ResponseCache
    positions: ResponseCache
    general: ResponseCache
    config: CacheConfig = field(default_factory=CacheConfig)

    @classmethod
    def from_config(
        cls,
        config: Optional[CacheConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> "CacheRegistry":
        config = config or CacheConfig()
        return cls(
            prices=ResponseCache(
                max_size=config.prices_max_size,
                default_ttl=config.prices_ttl,
                clock=clock,
                name="prices",
            ),
            positions=ResponseCache(
                max_size=config.positions_max_size,
                default_ttl=config.positions_ttl,
                clock=clock,
                name="positions",
            ),
            general=ResponseCache(
                max_size=config.general_max_size,
                default_ttl=config.default_ttl,
                clock=clock,
                name="general",
            ),
            config=config,
        )

    def __iter__(self) -> Iterator[ResponseCache]:
        return iter((self.prices, self.positions, self.general))

    def by_name(self, name: str) -> ResponseCache:
        for cache in self:
            if cache.name == name:
                return cache
        raise KeyError(f"Unknown cache: {name}")

    def invalidate_tag(self, tag: str) -> int:
        """Invalidate a tag across every cache. Returns entries removed."""
        return sum(cache.invalidate(tag) for cache in self)

    def clear_all(self) -> None:
        for cache in self:
            cache.clear()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {cache.name: cache.get_stats() for cache in self}
