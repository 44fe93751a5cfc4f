"""
Execution Engine - Execution Service.

============================================================
PURPOSE
============================================================
Entry point used by the route layer.

Wires the position mode resolver, order coordinator, unwind
engine, cached read paths and cache invalidation around one
exchange client, and ties their lifetime to start()/stop().

============================================================
EXPOSED OPERATIONS
============================================================
place_order(intent)   -> OrderResult           (raises on failure)
unwind_all()          -> UnwindReport
close_position(c, s)  -> UnwindOutcome
get_prices(inst_ids)  -> {inst_id: price}      (cached)
get_positions()       -> [OpenPosition]        (cached)
caches                -> CacheRegistry         (get/set/invalidate)

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol
from response_cache.config import CacheRegistry
from response_cache.invalidation import CacheInvalidationEvent, CacheInvalidationService

from .adapters.base import ExchangeClient
from .config import ExecutionEngineConfig
from .market_data import MarketDataService
from .order_coordinator import OrderCoordinator, validate_intent_fields
from .position_mode import PositionModeResolver
from .types import OpenPosition, OrderResult, PositionMode, PositionSide, TradingIntent, UnwindOutcome, UnwindReport
from .unwind import BatchUnwindEngine


logger = logging.getLogger(__name__)


class ExecutionService:
    """
    Facade over the execution engine.

    Example:
        async with ExecutionService(OKXClient(config.exchange), config) as service:
            report = await service.unwind_all()
    """

    def __init__(
        self,
        client: ExchangeClient,
        config: Optional[ExecutionEngineConfig] = None,
        caches: Optional[CacheRegistry] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or ExecutionEngineConfig()
        self._client = client
        self._caches = caches or CacheRegistry.from_config(self._config.cache, clock=clock)

        self._resolver = PositionModeResolver(client)
        self._coordinator = OrderCoordinator(client)
        self._unwind = BatchUnwindEngine(
            client,
            resolver=self._resolver,
            coordinator=self._coordinator,
            config=self._config.unwind,
        )
        self._market_data = MarketDataService(
            client,
            self._caches,
            default_instruments=self._config.watched_instruments,
        )
        self._invalidation = CacheInvalidationService(self._caches)

        self._running = False
        self._stats = {
            "orders_placed": 0,
            "orders_failed": 0,
            "unwinds": 0,
            "positions_closed": 0,
        }

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        logger.info(f"Starting Execution Service ({self._client.exchange_id})")
        await self._client.connect()
        self._running = True

    async def stop(self) -> None:
        """Disconnect the client and drop every cached response."""
        if not self._running:
            return
        logger.info("Stopping Execution Service")
        self._running = False
        try:
            await self._client.disconnect()
        finally:
            self._caches.clear_all()

    async def __aenter__(self) -> "ExecutionService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._running

    # --------------------------------------------------------
    # COMPONENTS
    # --------------------------------------------------------

    @property
    def caches(self) -> CacheRegistry:
        return self._caches

    @property
    def invalidation(self) -> CacheInvalidationService:
        return self._invalidation

    @property
    def unwind_engine(self) -> BatchUnwindEngine:
        return self._unwind

    # --------------------------------------------------------
    # TRADING
    # --------------------------------------------------------

    async def resolve_position_mode(self) -> PositionMode:
        return await self._resolver.resolve()

    async def place_order(self, intent: TradingIntent) -> OrderResult:
        """
        Resolve the position mode and place one order.

        Raises:
            ValidationError: malformed intent, nothing sent
            UpstreamError: mode lookup or order submission failed
        """
        validate_intent_fields(intent)
        mode = await self._resolver.resolve()
        try:
            result = await self._coordinator.place(intent, mode)
        except Exception:
            self._stats["orders_failed"] += 1
            raise

        self._stats["orders_placed"] += 1
        await self._invalidation.trigger(
            CacheInvalidationEvent.ORDER_PLACED,
            {"symbol": intent.symbol, "order_id": result.exchange_order_id},
        )
        return result

    async def unwind_all(self) -> UnwindReport:
        """
        Close every open position.

        Raises:
            UpstreamError: positions or account mode could not be read
        """
        report = await self._unwind.unwind_all()
        self._stats["unwinds"] += 1
        if report.succeeded:
            await self._invalidation.trigger(
                CacheInvalidationEvent.POSITIONS_UNWOUND,
                {"succeeded": report.succeeded, "failed": report.failed},
            )
        return report

    async def close_position(self, coin: str, side: PositionSide) -> UnwindOutcome:
        """
        Close one open leg. The position list is read from the
        exchange, never from the cache.

        Raises:
            ValidationError: side is not long or short
            UpstreamError: positions or account mode could not be read
        """
        outcome = await self._unwind.close_position(coin, side)
        if outcome.success:
            self._stats["positions_closed"] += 1
            await self._invalidation.trigger(
                CacheInvalidationEvent.POSITION_MODIFIED,
                {"coin": outcome.coin, "order_id": outcome.order_id},
            )
        return outcome

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def get_prices(self, inst_ids: Optional[List[str]] = None) -> Dict[str, Decimal]:
        return await self._market_data.get_prices(inst_ids)

    async def get_positions(self) -> List[OpenPosition]:
        return await self._market_data.get_positions()

    # --------------------------------------------------------
    # STATISTICS
    # --------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        stats["caches"] = self._caches.stats()
        stats["invalidation"] = self._invalidation.get_stats()
        metrics = getattr(self._client, "metrics", None)
        if metrics is not None:
            stats["exchange"] = metrics.get_summary()
        return stats
