"""
Execution Engine - Order Coordinator.

============================================================
PURPOSE
============================================================
Turns one TradingIntent into one exchange order.

STEPS:
1. Validate locally (no network call on failure)
2. Derive the position-side parameter from the position mode
3. Submit the quantity exactly as given, in contract units
4. Pass reduce-only and margin mode through unchanged
5. Return the exchange's fill report

POSITION SIDE:
    HEDGE mode: the intent must name a leg (LONG or SHORT).
                The coordinator never guesses one.
    NET mode:   the parameter is omitted entirely, even when
                the intent carries one.

SAFETY CONSTRAINTS:
- No retries: a market order is not idempotent
- No unit conversion: sizing happens where intents are built

============================================================
"""

import logging
from decimal import Decimal
from typing import Optional

from .adapters.base import ExchangeClient, OrderParams
from .errors import UpstreamError, ValidationError
from .types import OrderResult, OrderType, PositionMode, PositionSide, TradingIntent


logger = logging.getLogger(__name__)


def validate_intent_fields(intent: TradingIntent) -> None:
    """
    Checks that hold in every position mode.

    Run these before the position mode is read, so a malformed
    intent never costs an exchange round-trip.

    Raises:
        ValidationError: the first failed check
    """
    if not intent.symbol:
        raise ValidationError("symbol is required", field="symbol")

    if intent.quantity <= 0:
        raise ValidationError(
            f"quantity must be positive (got {intent.quantity})",
            field="quantity",
        )

    if intent.order_type is OrderType.LIMIT:
        if intent.price is None:
            raise ValidationError("price is required for limit orders", field="price")
        if intent.price <= 0:
            raise ValidationError(
                f"limit price must be positive (got {intent.price})",
                field="price",
            )


def validate_intent(intent: TradingIntent, mode: PositionMode) -> None:
    """
    Local checks that need no exchange round-trip.

    Raises:
        ValidationError: the first failed check
    """
    validate_intent_fields(intent)

    if mode is PositionMode.HEDGE and intent.position_side is PositionSide.UNSET:
        raise ValidationError(
            "position_side (long or short) is required in hedge mode",
            field="position_side",
        )


def derive_order_params(intent: TradingIntent, mode: PositionMode) -> OrderParams:
    """Exchange-facing flags for intent under mode."""
    if mode is PositionMode.HEDGE:
        position_side: Optional[PositionSide] = intent.position_side
    else:
        position_side = None

    return OrderParams(
        margin_mode=intent.margin_mode,
        position_side=position_side,
        reduce_only=intent.reduce_only,
        client_order_id=intent.client_order_id,
    )


class OrderCoordinator:
    """
    Places single orders through an exchange client.

    Stateless apart from the client reference, so one instance
    can serve any number of concurrent placements.
    """

    def __init__(self, client: ExchangeClient):
        self._client = client

    async def place(self, intent: TradingIntent, mode: PositionMode) -> OrderResult:
        """
        Validate, translate and submit one intent.

        Args:
            intent: What to trade
            mode: Account position mode for this call

        Returns:
            OrderResult as reported by the exchange

        Raises:
            ValidationError: before any network call
            UpstreamError: the exchange call failed
        """
        validate_intent(intent, mode)
        params = derive_order_params(intent, mode)
        price: Optional[Decimal] = intent.price if intent.order_type is OrderType.LIMIT else None

        logger.info(
            f"Placing {intent.order_type.value} {intent.side.value} {intent.quantity} "
            f"{intent.symbol} mode={mode.value} "
            f"pos_side={params.position_side.value if params.position_side else '-'} "
            f"margin={params.margin_mode.value} reduce_only={params.reduce_only}"
        )

        try:
            result = await self._client.create_order(
                symbol=intent.symbol,
                side=intent.side,
                order_type=intent.order_type,
                quantity=intent.quantity,
                price=price,
                params=params,
            )
        except UpstreamError as e:
            logger.warning(f"Order for {intent.symbol} failed: {e.to_log_format()}")
            raise

        logger.info(
            f"Order {result.exchange_order_id} for {intent.symbol}: "
            f"filled={result.filled_quantity} avg={result.average_price}"
        )
        return result
