"""
Execution Engine - Cached Read Paths.

============================================================
PURPOSE
============================================================
Price and position reads fronted by the response caches.

READ-THROUGH AT THE CALL SITE:
    1. cache.get(key)        hit -> return
    2. fetch from exchange   failure -> propagate unchanged
    3. cache.set(key, ...)   failure -> log, still return

The cache is only written after a successful fetch, and a
cache failure can never hide or replace a fetch error.

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from response_cache.config import CacheRegistry
from response_cache.invalidation import TAG_POSITIONS, TAG_PRICES

from .adapters.base import ExchangeClient
from .adapters.okx import to_inst_id
from .types import OpenPosition


logger = logging.getLogger(__name__)


POSITIONS_KEY = "positions:all"


def prices_key(inst_ids: List[str]) -> str:
    return "prices:" + ",".join(sorted(inst_ids))


class MarketDataService:
    """Cache-fronted price and position queries."""

    def __init__(
        self,
        client: ExchangeClient,
        caches: CacheRegistry,
        default_instruments: Optional[List[str]] = None,
    ):
        self._client = client
        self._caches = caches
        self._default_instruments = list(default_instruments or [])

    async def get_prices(self, inst_ids: Optional[List[str]] = None) -> Dict[str, Decimal]:
        """
        Last prices for inst_ids, or for the watched instruments.

        Raises:
            UpstreamError: cache miss and the ticker fetch failed
        """
        wanted = sorted({to_inst_id(i) for i in (inst_ids or self._default_instruments)})
        if not wanted:
            return {}
        key = prices_key(wanted)

        cached = self._caches.prices.get(key)
        if cached is not None:
            return dict(cached)

        prices = await self._client.fetch_tickers(wanted)
        self._store(self._caches.prices, key, prices, self._caches.config.prices_ttl, TAG_PRICES)
        return dict(prices)

    async def get_positions(self) -> List[OpenPosition]:
        """
        Open positions.

        Raises:
            UpstreamError: cache miss and the position fetch failed
        """
        cached = self._caches.positions.get(POSITIONS_KEY)
        if cached is not None:
            return list(cached)

        positions = await self._client.fetch_positions()
        self._store(
            self._caches.positions,
            POSITIONS_KEY,
            tuple(positions),
            self._caches.config.positions_ttl,
            TAG_POSITIONS,
        )
        return list(positions)

    @staticmethod
    def _store(cache, key: str, value, ttl: float, tag: str) -> None:
        try:
            cache.set(key, value, ttl=ttl, tags=(tag,))
        except Exception as e:
            logger.warning(f"Cache population failed for {key}: {e}")
