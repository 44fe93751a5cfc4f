"""
Execution Engine - Exchange Client Interface.

============================================================
PURPOSE
============================================================
The exchange operations the engine depends on, and nothing
more.

DESIGN PRINCIPLES:
- Symbols in, symbols out: the engine passes BASE/USDT:USDT
  style identifiers, the client translates them
- Native order fields (posSide, tdMode, reduceOnly) are the
  client's concern, described here by OrderParams
- Fully testable with MockExchangeClient

============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from ..types import (
    AccountConfig,
    InstrumentSpec,
    MarginMode,
    OpenPosition,
    OrderResult,
    OrderSide,
    OrderType,
    PositionSide,
)


@dataclass(frozen=True)
class OrderParams:
    """Exchange-facing order flags derived by the coordinator."""

    margin_mode: MarginMode = MarginMode.CROSS

    position_side: Optional[PositionSide] = None
    """None means the field is omitted from the request (net mode)."""

    reduce_only: bool = False
    client_order_id: Optional[str] = None


class ExchangeClient(ABC):
    """
    Abstract exchange client.

    Implementations:
    - OKXClient: OKX V5 REST API
    - MockExchangeClient: in-memory, for tests and dry runs

    Every failing call raises an UpstreamError subclass.
    """

    @property
    @abstractmethod
    def exchange_id(self) -> str:
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport. Safe to call twice."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    @abstractmethod
    async def fetch_tickers(self, inst_ids: List[str]) -> Dict[str, Decimal]:
        """
        Last traded price per instrument.

        Args:
            inst_ids: Instrument ids, e.g. BTC-USDT-SWAP

        Returns:
            Mapping of instrument id to price. Unknown ids are absent.
        """
        pass

    @abstractmethod
    async def fetch_instruments(
        self,
        inst_ids: Optional[List[str]] = None,
    ) -> Dict[str, InstrumentSpec]:
        """Contract specifications, optionally filtered to inst_ids."""
        pass

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    @abstractmethod
    async def fetch_positions(self) -> List[OpenPosition]:
        """All non-zero swap positions."""
        pass

    @abstractmethod
    async def fetch_account_config(self) -> AccountConfig:
        """Account configuration, including the raw position mode value."""
        pass

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    @abstractmethod
    async def create_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Optional[Decimal] = None,
        params: Optional[OrderParams] = None,
    ) -> OrderResult:
        """
        Submit one order.

        Args:
            symbol: Swap symbol, e.g. BTC/USDT:USDT
            side: Order side
            order_type: Market or limit
            quantity: Size in contract units, sent as-is
            price: Limit price, None for market orders
            params: Position side, margin mode, reduce-only

        Returns:
            OrderResult with the exchange's fill figures

        Raises:
            UpstreamAuthError, UpstreamRejectionError, TransientNetworkError
        """
        pass

    async def __aenter__(self) -> "ExchangeClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
