"""
Execution Engine - Exchange Clients Package.

============================================================
PURPOSE
============================================================
Exchange client implementations and their support code.

AVAILABLE CLIENTS:
- OKXClient: OKX V5 REST API, USDT perpetual swaps
- MockExchangeClient: in-memory, for tests and dry runs

UTILITIES:
- create_client: picks a client for a configuration
- ClientMetrics: request and order counters
- ExchangeLogger: logging with credentials masked

ERROR HANDLING:
- ExchangeError: normalized failure payload
- map_okx_error: OKX code table
- upstream_error_for: payload to exception class

============================================================
"""

from .base import ExchangeClient, OrderParams
from .errors import (
    ErrorCategory,
    ExchangeError,
    OKX_ERROR_MAP,
    create_network_error,
    create_timeout_error,
    map_okx_error,
    upstream_error_for,
)
from .factory import create_client, create_connected_client
from .logging_utils import ExchangeLogger, mask_headers, mask_params, mask_value
from .metrics import ClientMetrics
from .mock import MockConfig, MockExchangeClient, RecordedCall
from .okx import OKXClient, coin_from_inst_id, to_inst_id

__all__ = [
    "ExchangeClient",
    "OrderParams",
    "ErrorCategory",
    "ExchangeError",
    "OKX_ERROR_MAP",
    "create_network_error",
    "create_timeout_error",
    "map_okx_error",
    "upstream_error_for",
    "create_client",
    "create_connected_client",
    "ExchangeLogger",
    "mask_headers",
    "mask_params",
    "mask_value",
    "ClientMetrics",
    "MockConfig",
    "MockExchangeClient",
    "RecordedCall",
    "OKXClient",
    "coin_from_inst_id",
    "to_inst_id",
]
