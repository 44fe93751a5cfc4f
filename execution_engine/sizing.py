"""
Execution Engine - Contract Sizing.

============================================================
PURPOSE
============================================================
Converts base-currency amounts and USDT notionals into
contract units for building TradingIntents.

The coordinator submits quantities exactly as given, so this
is the one place where units change. Every conversion floors
to the instrument's lot size; a result below the minimum order
size is rejected rather than rounded up.

    contracts = amount / ctVal                (base amount)
    contracts = usdt / (price * ctVal)        (USDT notional)

============================================================
"""

import logging
from decimal import Decimal

from .errors import ValidationError
from .types import InstrumentSpec


logger = logging.getLogger(__name__)


def floor_to_lot(contracts: Decimal, lot_size: Decimal) -> Decimal:
    """Round down to a whole number of lots."""
    if lot_size <= 0:
        return contracts
    return (contracts // lot_size) * lot_size


def _check_minimum(contracts: Decimal, spec: InstrumentSpec, requested: str) -> Decimal:
    if contracts <= 0 or contracts < spec.min_size:
        raise ValidationError(
            f"{requested} is below the minimum order size of {spec.min_size} "
            f"contracts for {spec.inst_id} (got {contracts})",
            field="quantity",
            context={"inst_id": spec.inst_id, "min_size": str(spec.min_size)},
        )
    return contracts


def contracts_for_base(amount: Decimal, spec: InstrumentSpec) -> Decimal:
    """
    Contracts equivalent to a base-currency amount.

    Raises:
        ValidationError: non-positive amount, or below the minimum size
    """
    if amount <= 0:
        raise ValidationError(f"amount must be positive (got {amount})", field="amount")
    if spec.contract_value <= 0:
        raise ValidationError(f"{spec.inst_id} has no contract value", field="contract_value")

    contracts = floor_to_lot(amount / spec.contract_value, spec.lot_size)
    logger.debug(f"{amount} base on {spec.inst_id} -> {contracts} contracts")
    return _check_minimum(contracts, spec, f"{amount} base")


def contracts_for_notional(usdt: Decimal, price: Decimal, spec: InstrumentSpec) -> Decimal:
    """
    Contracts worth a USDT notional at price.

    Raises:
        ValidationError: non-positive inputs, or below the minimum size
    """
    if usdt <= 0:
        raise ValidationError(f"notional must be positive (got {usdt})", field="notional")
    if price <= 0:
        raise ValidationError(f"price must be positive (got {price})", field="price")
    return contracts_for_base(usdt / price, spec)
