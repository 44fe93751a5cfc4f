"""
Response Cache Package.

Short-lived, size-bounded caching for exchange read paths.

Components:
- cache: ResponseCache, the TTL store
- config: per-domain presets and the CacheRegistry
- invalidation: event-driven tag invalidation
"""

from .cache import CacheEntry, ResponseCache
from .config import CacheConfig, CacheRegistry
from .invalidation import (
    CacheInvalidationEvent,
    CacheInvalidationService,
    InvalidationRule,
    TAG_ACCOUNT,
    TAG_POSITIONS,
    TAG_PRICES,
)

__all__ = [
    "CacheEntry",
    "ResponseCache",
    "CacheConfig",
    "CacheRegistry",
    "CacheInvalidationEvent",
    "CacheInvalidationService",
    "InvalidationRule",
    "TAG_ACCOUNT",
    "TAG_POSITIONS",
    "TAG_PRICES",
]
