"""
Execution Engine - Mock Exchange Client.

============================================================
PURPOSE
============================================================
In-memory exchange client for tests and --dry-run.

FEATURES:
- Configurable positions, prices and account position mode
- Per-coin latency, to observe concurrency
- Per-coin and one-shot error injection
- Every call recorded, to assert what did or did not hit
  the exchange

============================================================
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..types import (
    AccountConfig,
    InstrumentSpec,
    OpenPosition,
    OrderResult,
    OrderSide,
    OrderType,
    PositionSide,
)
from .base import ExchangeClient, OrderParams
from .okx import coin_from_inst_id, to_inst_id


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockConfig:
    """Initial state and behaviour of the mock client."""

    position_mode: str = "net_mode"
    """Raw account posMode value."""

    positions: List[OpenPosition] = field(default_factory=list)

    prices: Dict[str, Decimal] = field(default_factory=dict)
    """Last price by instrument id."""

    default_price: Decimal = Decimal("50000")
    """Fill price for instruments missing from prices."""

    latency_seconds: float = 0.0
    """Latency applied to every call."""

    order_latency_by_coin: Dict[str, float] = field(default_factory=dict)
    """Extra create_order latency per coin."""

    order_errors_by_coin: Dict[str, Exception] = field(default_factory=dict)
    """Exception raised by create_order for a coin, every time."""

    instruments: Dict[str, InstrumentSpec] = field(default_factory=dict)


@dataclass
class RecordedCall:
    method: str
    args: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# MOCK CLIENT
# ============================================================

class MockExchangeClient(ExchangeClient):
    """
    Mock exchange client.

    Market orders fill completely at the configured price. Limit
    orders are accepted and left unfilled. A market order on the
    opposite side of an open leg reduces that leg.
    """

    def __init__(self, config: Optional[MockConfig] = None):
        self._config = config or MockConfig()
        self._positions: List[OpenPosition] = list(self._config.positions)
        self._connected = False
        self._order_ids = itertools.count(1)
        self._next_errors: Dict[str, Exception] = {}

        self.calls: List[RecordedCall] = []
        self.orders: List[Dict[str, Any]] = []

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def exchange_id(self) -> str:
        return "mock"

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def config(self) -> MockConfig:
        return self._config

    # --------------------------------------------------------
    # TEST HOOKS
    # --------------------------------------------------------

    def fail_next(self, method: str, error: Exception) -> None:
        """Make the next call to method raise error."""
        self._next_errors[method] = error

    def set_position_mode(self, value: str) -> None:
        self._config.position_mode = value

    def set_positions(self, positions: List[OpenPosition]) -> None:
        self._positions = list(positions)

    def calls_to(self, method: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method]

    async def _enter(self, method: str, **args) -> None:
        self.calls.append(RecordedCall(method, args))
        if self._config.latency_seconds:
            await asyncio.sleep(self._config.latency_seconds)
        error = self._next_errors.pop(method, None)
        if error is not None:
            raise error

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def fetch_tickers(self, inst_ids: List[str]) -> Dict[str, Decimal]:
        await self._enter("fetch_tickers", inst_ids=list(inst_ids))
        wanted = [to_inst_id(i) for i in inst_ids]
        return {i: self._config.prices[i] for i in wanted if i in self._config.prices}

    async def fetch_instruments(
        self,
        inst_ids: Optional[List[str]] = None,
    ) -> Dict[str, InstrumentSpec]:
        await self._enter("fetch_instruments", inst_ids=inst_ids)
        if not inst_ids:
            return dict(self._config.instruments)
        wanted = {to_inst_id(i) for i in inst_ids}
        return {k: v for k, v in self._config.instruments.items() if k in wanted}

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def fetch_positions(self) -> List[OpenPosition]:
        await self._enter("fetch_positions")
        return list(self._positions)

    async def fetch_account_config(self) -> AccountConfig:
        await self._enter("fetch_account_config")
        return AccountConfig(
            position_mode=self._config.position_mode,
            raw={"posMode": self._config.position_mode},
        )

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def create_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Optional[Decimal] = None,
        params: Optional[OrderParams] = None,
    ) -> OrderResult:
        params = params or OrderParams()
        await self._enter(
            "create_order",
            symbol=symbol,
            side=side,
            order_type=order_type,
            quantity=quantity,
            price=price,
            params=params,
        )

        inst_id = to_inst_id(symbol)
        coin = coin_from_inst_id(inst_id)

        delay = self._config.order_latency_by_coin.get(coin)
        if delay:
            await asyncio.sleep(delay)

        error = self._config.order_errors_by_coin.get(coin)
        if error is not None:
            raise error

        order_id = f"mock-{next(self._order_ids)}"
        self.orders.append({
            "order_id": order_id,
            "symbol": symbol,
            "inst_id": inst_id,
            "side": side,
            "order_type": order_type,
            "quantity": quantity,
            "price": price,
            "params": params,
        })

        if order_type is OrderType.LIMIT:
            return OrderResult(
                exchange_order_id=order_id,
                client_order_id=params.client_order_id,
                status="live",
                symbol=inst_id,
            )

        fill_price = self._config.prices.get(inst_id, self._config.default_price)
        self._reduce_position(coin, side, quantity, params.position_side)
        return OrderResult(
            exchange_order_id=order_id,
            filled_quantity=quantity,
            average_price=fill_price,
            cost=quantity * fill_price,
            client_order_id=params.client_order_id,
            status="filled",
            symbol=inst_id,
        )

    def _reduce_position(
        self,
        coin: str,
        side: OrderSide,
        quantity: Decimal,
        position_side: Optional[PositionSide],
    ) -> None:
        remaining = []
        for position in self._positions:
            matches = (
                position.coin == coin
                and position.side.closing_side is side
                and position_side in (None, position.side)
            )
            if not matches:
                remaining.append(position)
                continue
            left = position.contracts - quantity
            if left > 0:
                remaining.append(OpenPosition(
                    coin=position.coin,
                    side=position.side,
                    contracts=left,
                    notional=position.notional,
                    leverage=position.leverage,
                    unrealized_pnl=position.unrealized_pnl,
                    margin_mode=position.margin_mode,
                    inst_id=position.inst_id,
                ))
        self._positions = remaining
