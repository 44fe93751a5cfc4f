"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
Type definitions shared by the coordinator, the unwind engine
and the exchange clients.

CRITICAL PRINCIPLE:
    "The engine executes intents, it does not decide them."
    Quantities are in contract units end to end; nothing in
    this package converts them.

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ValidationError


HEDGE_MODE_VALUE = "long_short_mode"
"""Account config posMode value that means hedge mode."""

QUOTE_CURRENCY = "USDT"


# ============================================================
# ORDER ENUMS
# ============================================================

class OrderSide(Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(Enum):
    """Order type."""

    MARKET = "market"
    """Execute at current market price."""

    LIMIT = "limit"
    """Execute at specified price or better."""


class PositionSide(Enum):
    """
    Leg tag for hedge mode.

    UNSET means no leg was named. It is the only valid value in
    net mode and is rejected for orders placed in hedge mode.
    """

    LONG = "long"
    SHORT = "short"
    UNSET = "unset"

    @property
    def closing_side(self) -> OrderSide:
        """Order side that reduces a leg of this side."""
        if self is PositionSide.LONG:
            return OrderSide.SELL
        if self is PositionSide.SHORT:
            return OrderSide.BUY
        raise ValueError("UNSET has no closing side")


class MarginMode(Enum):
    """Margin mode (OKX tdMode)."""

    CROSS = "cross"
    ISOLATED = "isolated"


class PositionMode(Enum):
    """Account position mode."""

    HEDGE = "hedge"
    """Separate long and short legs per instrument."""

    NET = "net"
    """One signed position per instrument."""

    @classmethod
    def from_account_value(cls, value: Optional[str]) -> "PositionMode":
        """Anything other than the hedge literal is net mode."""
        return cls.HEDGE if value == HEDGE_MODE_VALUE else cls.NET


# ============================================================
# HELPERS
# ============================================================

def to_decimal(value: Any, field_name: str) -> Decimal:
    """Coerce to a finite Decimal or raise ValidationError."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(
                f"{field_name} is not a number: {value!r}",
                field=field_name,
                cause=e,
            )
    if not result.is_finite():
        raise ValidationError(
            f"{field_name} must be a finite number (got {value!r})",
            field=field_name,
        )
    return result


def _to_enum(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"{field_name} must be one of: {allowed} (got {value!r})",
            field=field_name,
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def swap_symbol(coin: str, quote: str = QUOTE_CURRENCY) -> str:
    """Perpetual swap symbol, e.g. BTC -> BTC/USDT:USDT."""
    return f"{coin.upper()}/{quote}:{quote}"


# ============================================================
# TRADING INTENT
# ============================================================

@dataclass
class TradingIntent:
    """
    A pre-formed instruction to trade.

    This is the INPUT to the OrderCoordinator. Structural checks
    that depend on the position mode (limit price present, leg
    named in hedge mode) happen in the coordinator, before any
    network call.
    """

    symbol: str
    """Instrument, e.g. BTC/USDT:USDT or BTC-USDT-SWAP."""

    side: OrderSide
    order_type: OrderType

    quantity: Decimal
    """Order size in contract units."""

    price: Optional[Decimal] = None
    """Limit price. Ignored for market orders."""

    position_side: PositionSide = PositionSide.UNSET
    """Leg tag, honoured in hedge mode only."""

    reduce_only: bool = False
    margin_mode: MarginMode = MarginMode.CROSS

    client_order_id: Optional[str] = None
    """Optional idempotency tag forwarded to the exchange."""

    def __post_init__(self):
        self.side = _to_enum(OrderSide, self.side, "side")
        self.order_type = _to_enum(OrderType, self.order_type, "order_type")
        self.position_side = _to_enum(PositionSide, self.position_side, "position_side")
        self.margin_mode = _to_enum(MarginMode, self.margin_mode, "margin_mode")
        self.quantity = to_decimal(self.quantity, "quantity")
        if self.price is not None:
            self.price = to_decimal(self.price, "price")

    @property
    def is_limit(self) -> bool:
        return self.order_type is OrderType.LIMIT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingIntent":
        """
        Build an intent from a route-layer payload.

        Accepts both snake_case and the camelCase names used by
        HTTP clients (orderType, posSide, reduceOnly, tdMode).

        Raises:
            ValidationError: missing or malformed fields
        """
        def pick(*names, default=None):
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return default

        symbol = pick("symbol")
        if not symbol:
            raise ValidationError("symbol is required", field="symbol")
        side = pick("side")
        if side is None:
            raise ValidationError("side is required", field="side")
        quantity = pick("quantity", "amount")
        if quantity is None:
            raise ValidationError("quantity is required", field="quantity")
        position_side = pick("position_side", "posSide", default=PositionSide.UNSET)
        if isinstance(position_side, str) and position_side.lower() in ("", "net"):
            position_side = PositionSide.UNSET

        return cls(
            symbol=str(symbol),
            side=side,
            order_type=pick("order_type", "orderType", "type", default=OrderType.MARKET),
            quantity=quantity,
            price=pick("price"),
            position_side=position_side,
            reduce_only=_to_bool(pick("reduce_only", "reduceOnly", default=False)),
            margin_mode=pick("margin_mode", "tdMode", "mgnMode", default=MarginMode.CROSS),
            client_order_id=pick("client_order_id", "clOrdId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "quantity": str(self.quantity),
            "price": str(self.price) if self.price is not None else None,
            "position_side": self.position_side.value,
            "reduce_only": self.reduce_only,
            "margin_mode": self.margin_mode.value,
            "client_order_id": self.client_order_id,
        }


# ============================================================
# ORDER RESULT
# ============================================================

@dataclass
class OrderResult:
    """
    Fill report returned by the exchange client.

    Every numeric field is copied from the exchange response,
    never recomputed locally.
    """

    exchange_order_id: str
    filled_quantity: Decimal = Decimal("0")
    average_price: Optional[Decimal] = None

    cost: Optional[Decimal] = None
    """Filled notional as reported by the exchange, None if not reported."""

    client_order_id: Optional[str] = None
    status: str = ""
    symbol: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exchange_order_id": self.exchange_order_id,
            "filled_quantity": str(self.filled_quantity),
            "average_price": str(self.average_price) if self.average_price is not None else None,
            "cost": str(self.cost) if self.cost is not None else None,
            "client_order_id": self.client_order_id,
            "status": self.status,
            "symbol": self.symbol,
        }


# ============================================================
# POSITIONS
# ============================================================

@dataclass(frozen=True)
class OpenPosition:
    """Snapshot of one open leg as reported by the exchange."""

    coin: str
    """Base coin, e.g. BTC."""

    side: PositionSide
    """LONG or SHORT. Net positions are tagged by the sign of their size."""

    contracts: Decimal
    """Absolute size in contract units."""

    notional: Decimal = Decimal("0")
    leverage: Decimal = Decimal("1")
    unrealized_pnl: Decimal = Decimal("0")

    margin_mode: Optional[MarginMode] = None
    """None when the exchange did not report one."""

    inst_id: str = ""
    entry_price: Optional[Decimal] = None
    mark_price: Optional[Decimal] = None
    liquidation_price: Optional[Decimal] = None

    @property
    def symbol(self) -> str:
        """The instrument the exchange reported, else the coin's USDT swap."""
        return self.inst_id or swap_symbol(self.coin)

    def to_dict(self) -> Dict[str, Any]:
        def opt(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "coin": self.coin,
            "side": self.side.value,
            "contracts": str(self.contracts),
            "notional": str(self.notional),
            "leverage": str(self.leverage),
            "unrealized_pnl": str(self.unrealized_pnl),
            "margin_mode": self.margin_mode.value if self.margin_mode else None,
            "inst_id": self.inst_id,
            "entry_price": opt(self.entry_price),
            "mark_price": opt(self.mark_price),
            "liquidation_price": opt(self.liquidation_price),
        }


@dataclass(frozen=True)
class AccountConfig:
    """Subset of the account configuration the engine reads."""

    position_mode: str
    """Raw posMode value, e.g. long_short_mode or net_mode."""

    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class InstrumentSpec:
    """Contract specification for a swap instrument."""

    inst_id: str
    contract_value: Decimal
    """Base-currency amount represented by one contract (OKX ctVal)."""

    lot_size: Decimal
    min_size: Decimal
    tick_size: Decimal = Decimal("0")


# ============================================================
# UNWIND REPORTING
# ============================================================

@dataclass
class UnwindOutcome:
    """Result of closing one position."""

    coin: str
    success: bool
    order_id: Optional[str] = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    side: Optional[OrderSide] = None
    contracts: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coin": self.coin,
            "success": self.success,
            "order_id": self.order_id,
            "error": self.error_message,
            "error_type": self.error_type,
            "side": self.side.value if self.side else None,
            "contracts": str(self.contracts) if self.contracts is not None else None,
        }


class UnwindStatus(Enum):
    """Overall unwind verdict."""

    NOTHING_TO_CLOSE = "nothing_to_close"
    FULL_SUCCESS = "full_success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass
class UnwindReport:
    """Aggregate of one unwind call."""

    status: UnwindStatus
    outcomes: List[UnwindOutcome] = field(default_factory=list)
    position_mode: Optional[PositionMode] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def is_failure(self) -> bool:
        """Partial success still counts as a non-failure."""
        return self.status is UnwindStatus.FAILED

    @property
    def message(self) -> str:
        if self.status is UnwindStatus.NOTHING_TO_CLOSE:
            return "No open positions to close"
        if self.status is UnwindStatus.FULL_SUCCESS:
            return f"Closed all {self.succeeded} positions"
        if self.status is UnwindStatus.PARTIAL_SUCCESS:
            return f"Closed {self.succeeded} positions, {self.failed} failed"
        return f"Failed to close all {self.failed} positions"

    @classmethod
    def from_outcomes(
        cls,
        outcomes: List[UnwindOutcome],
        position_mode: Optional[PositionMode] = None,
        duration_ms: float = 0.0,
    ) -> "UnwindReport":
        if not outcomes:
            status = UnwindStatus.NOTHING_TO_CLOSE
        else:
            ok = sum(1 for o in outcomes if o.success)
            if ok == len(outcomes):
                status = UnwindStatus.FULL_SUCCESS
            elif ok > 0:
                status = UnwindStatus.PARTIAL_SUCCESS
            else:
                status = UnwindStatus.FAILED
        return cls(
            status=status,
            outcomes=list(outcomes),
            position_mode=position_mode,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": not self.is_failure,
            "status": self.status.value,
            "message": self.message,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "position_mode": self.position_mode.value if self.position_mode else None,
            "duration_ms": round(self.duration_ms, 2),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
