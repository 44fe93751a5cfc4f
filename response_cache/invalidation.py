"""
Response Cache - Event-Driven Invalidation.

============================================================
PURPOSE
============================================================
Maps trading events to the cache tags they make stale.

Placing an order or unwinding positions changes what the
exchange will report for positions and balances, so the
matching cache entries are dropped immediately instead of
waiting for their TTL.

Listeners may subscribe to events. A failing listener is
logged and never interrupts the triggering call.

============================================================
"""

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .config import CacheRegistry


logger = logging.getLogger(__name__)


TAG_PRICES = "prices"
TAG_POSITIONS = "positions"
# Carried by balance entries the route layer puts in the general cache.
TAG_ACCOUNT = "account"

PRICE_SPIKE_THRESHOLD_PCT = 5.0


class CacheInvalidationEvent(Enum):
    """Events that make cached exchange data stale."""

    ORDER_PLACED = "order_placed"
    TRADE_EXECUTED = "trade_executed"
    POSITION_MODIFIED = "position_modified"
    POSITIONS_UNWOUND = "positions_unwound"
    PRICE_SPIKE = "price_spike"
    BALANCE_CHANGED = "balance_changed"


EventHandler = Callable[
    [CacheInvalidationEvent, Dict[str, Any]],
    Union[None, Awaitable[None]],
]


@dataclass
class InvalidationRule:
    """Tags dropped when an event fires."""

    event: CacheInvalidationEvent
    tags: Tuple[str, ...]
    description: str = ""


def default_rules() -> List[InvalidationRule]:
    return [
        InvalidationRule(
            CacheInvalidationEvent.ORDER_PLACED,
            (TAG_POSITIONS, TAG_ACCOUNT),
            "A new order can open or change a position",
        ),
        InvalidationRule(
            CacheInvalidationEvent.TRADE_EXECUTED,
            (TAG_POSITIONS, TAG_ACCOUNT),
            "Fills change positions and margin",
        ),
        InvalidationRule(
            CacheInvalidationEvent.POSITION_MODIFIED,
            (TAG_POSITIONS,),
        ),
        InvalidationRule(
            CacheInvalidationEvent.POSITIONS_UNWOUND,
            (TAG_POSITIONS, TAG_ACCOUNT),
            "Close-all changes every leg",
        ),
        InvalidationRule(
            CacheInvalidationEvent.PRICE_SPIKE,
            (TAG_PRICES,),
            "Large move makes cached tickers misleading",
        ),
        InvalidationRule(
            CacheInvalidationEvent.BALANCE_CHANGED,
            (TAG_ACCOUNT,),
        ),
    ]


@dataclass
class InvalidationStats:
    events_processed: int = 0
    entries_invalidated: int = 0
    handler_failures: int = 0
    last_event: Optional[str] = None
    by_event: Dict[str, int] = field(default_factory=dict)


class CacheInvalidationService:
    """
    Applies invalidation rules to a CacheRegistry.

    Example:
        service = CacheInvalidationService(registry)
        await service.trigger(CacheInvalidationEvent.ORDER_PLACED, {"symbol": "BTC"})
    """

    def __init__(
        self,
        registry: CacheRegistry,
        rules: Optional[List[InvalidationRule]] = None,
    ):
        self._registry = registry
        self._rules: Dict[CacheInvalidationEvent, InvalidationRule] = {
            rule.event: rule for rule in (rules if rules is not None else default_rules())
        }
        self._handlers: Dict[CacheInvalidationEvent, List[EventHandler]] = {}
        self._stats = InvalidationStats()

    # ---------------------------------------------------------
    # RULES
    # ---------------------------------------------------------

    def add_rule(self, rule: InvalidationRule) -> None:
        """Add or replace the rule for rule.event."""
        self._rules[rule.event] = rule

    def remove_rule(self, event: CacheInvalidationEvent) -> bool:
        return self._rules.pop(event, None) is not None

    def rule_for(self, event: CacheInvalidationEvent) -> Optional[InvalidationRule]:
        return self._rules.get(event)

    # ---------------------------------------------------------
    # LISTENERS
    # ---------------------------------------------------------

    def on(
        self,
        event: CacheInvalidationEvent,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """
        Subscribe to an event.

        Returns:
            A callable that removes the subscription
        """
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    # ---------------------------------------------------------
    # TRIGGER
    # ---------------------------------------------------------

    async def trigger(
        self,
        event: CacheInvalidationEvent,
        data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Apply the rule for event, then notify listeners.

        Returns:
            Number of cache entries removed
        """
        data = data or {}
        removed = 0

        rule = self._rules.get(event)
        if rule is not None:
            for tag in rule.tags:
                removed += self._registry.invalidate_tag(tag)

        self._stats.events_processed += 1
        self._stats.entries_invalidated += removed
        self._stats.last_event = event.value
        self._stats.by_event[event.value] = self._stats.by_event.get(event.value, 0) + 1

        logger.debug(f"Cache event {event.value}: {removed} entries invalidated")

        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._stats.handler_failures += 1
                logger.error(f"Cache event handler failed for {event.value}: {e}")

        return removed

    async def on_price_spike(self, symbol: str, change_pct: float) -> bool:
        """
        Drop cached prices when a move exceeds the spike threshold.

        Returns:
            True if the move counted as a spike
        """
        if abs(change_pct) <= PRICE_SPIKE_THRESHOLD_PCT:
            return False
        logger.info(f"Price spike on {symbol}: {change_pct:+.2f}%")
        await self.trigger(
            CacheInvalidationEvent.PRICE_SPIKE,
            {"symbol": symbol, "change_pct": change_pct},
        )
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {
            "events_processed": self._stats.events_processed,
            "entries_invalidated": self._stats.entries_invalidated,
            "handler_failures": self._stats.handler_failures,
            "last_event": self._stats.last_event,
            "by_event": dict(self._stats.by_event),
            "rules": len(self._rules),
        }
