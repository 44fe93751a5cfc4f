"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Order execution for OKX USDT perpetual swaps.

CRITICAL PRINCIPLE:
    "The engine executes intents, it does not decide them."

AUTHORITY BOUNDARIES:
    CAN:
        - Read the account position mode
        - Submit single orders
        - Close every open position in parallel
        - Serve cached price and position reads

    MUST NOT:
        - Resize or convert order quantities
        - Guess a hedge-mode leg
        - Retry a failed order

============================================================
MODULES
============================================================
- types: Intents, results, positions, unwind reports
- errors: Validation and upstream error taxonomy
- config: Exchange, unwind and cache configuration
- position_mode: Account position mode resolver
- order_coordinator: Single order placement
- unwind: Batch close-all engine
- sizing: Base amount / notional to contract conversion
- market_data: Cache-fronted price and position reads
- execution_service: Facade wiring everything together
- adapters: OKX and in-memory exchange clients
- cli: Operator command line

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    HEDGE_MODE_VALUE,
    AccountConfig,
    InstrumentSpec,
    MarginMode,
    OpenPosition,
    OrderResult,
    OrderSide,
    OrderType,
    PositionMode,
    PositionSide,
    TradingIntent,
    UnwindOutcome,
    UnwindReport,
    UnwindStatus,
    swap_symbol,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    ExecutionError,
    TransientNetworkError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRejectionError,
    ValidationError,
)

# ============================================================
# CONFIGURATION
# ============================================================
from .config import (
    DEFAULT_WATCHED_INSTRUMENTS,
    ExchangeConfig,
    ExecutionEngineConfig,
    UnwindConfig,
)

# ============================================================
# COMPONENTS
# ============================================================
from .position_mode import PositionModeResolver
from .order_coordinator import OrderCoordinator, derive_order_params, validate_intent, validate_intent_fields
from .unwind import POSITION_NOT_FOUND, BatchUnwindEngine, UnwindPhase, closing_intent_for
from .sizing import contracts_for_base, contracts_for_notional, floor_to_lot
from .market_data import MarketDataService
from .execution_service import ExecutionService

# ============================================================
# ADAPTERS
# ============================================================
from .adapters import (
    ExchangeClient,
    MockConfig,
    MockExchangeClient,
    OKXClient,
    OrderParams,
    create_client,
)


__all__ = [
    # Types
    "HEDGE_MODE_VALUE",
    "AccountConfig",
    "InstrumentSpec",
    "MarginMode",
    "OpenPosition",
    "OrderResult",
    "OrderSide",
    "OrderType",
    "PositionMode",
    "PositionSide",
    "TradingIntent",
    "UnwindOutcome",
    "UnwindReport",
    "UnwindStatus",
    "swap_symbol",
    # Errors
    "ExecutionError",
    "TransientNetworkError",
    "UpstreamAuthError",
    "UpstreamError",
    "UpstreamRejectionError",
    "ValidationError",
    # Config
    "DEFAULT_WATCHED_INSTRUMENTS",
    "ExchangeConfig",
    "ExecutionEngineConfig",
    "UnwindConfig",
    # Components
    "PositionModeResolver",
    "OrderCoordinator",
    "derive_order_params",
    "validate_intent",
    "validate_intent_fields",
    "BatchUnwindEngine",
    "UnwindPhase",
    "closing_intent_for",
    "POSITION_NOT_FOUND",
    "contracts_for_base",
    "contracts_for_notional",
    "floor_to_lot",
    "MarketDataService",
    "ExecutionService",
    # Adapters
    "ExchangeClient",
    "MockConfig",
    "MockExchangeClient",
    "OKXClient",
    "OrderParams",
    "create_client",
]
