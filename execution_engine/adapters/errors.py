"""
Exchange Client - Error Normalization.

============================================================
PURPOSE
============================================================
Turns raw OKX failures into one normalized payload and picks
the exception class the engine raises for it.

- OKX code table (top-level code and order-level sCode)
- HTTP status fallback when the code is unknown
- Network and timeout payloads for transport failures

============================================================
CATEGORY -> EXCEPTION
============================================================
AUTHENTICATION                          -> UpstreamAuthError
NETWORK, TIMEOUT, RATE_LIMIT,
EXCHANGE_ERROR                          -> TransientNetworkError
anything else                           -> UpstreamRejectionError

============================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..errors import (
    TransientNetworkError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamRejectionError,
)


logger = logging.getLogger(__name__)


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ErrorCategory(Enum):
    """Normalized failure categories."""

    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    INVALID_ORDER = "INVALID_ORDER"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PRICE = "INVALID_PRICE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_MARGIN = "INSUFFICIENT_MARGIN"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
    POSITION_MODE = "POSITION_MODE"
    MAX_POSITION = "MAX_POSITION"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    UNKNOWN = "UNKNOWN"


TRANSIENT_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.EXCHANGE_ERROR,
})


# ============================================================
# NORMALIZED PAYLOAD
# ============================================================

@dataclass
class ExchangeError:
    """
    Normalized exchange failure.

    Keeps the exchange's own code and message next to the
    normalized category so nothing from the response is lost.
    """

    category: ErrorCategory
    code: str
    """Normalized code, e.g. OKX_51008."""

    message: str

    exchange_code: Optional[str] = None
    exchange_message: Optional[str] = None
    http_status: Optional[int] = None

    exchange_id: str = "okx"
    operation: Optional[str] = None
    symbol: Optional[str] = None

    @property
    def is_transient(self) -> bool:
        return self.category in TRANSIENT_CATEGORIES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "exchange_code": self.exchange_code,
            "exchange_message": self.exchange_message,
            "http_status": self.http_status,
            "exchange_id": self.exchange_id,
            "operation": self.operation,
            "symbol": self.symbol,
        }

    def __str__(self) -> str:
        return f"[{self.category.value}] {self.code}: {self.message}"


# ============================================================
# OKX CODE TABLE
# ============================================================

OKX_ERROR_MAP: Dict[str, Tuple[ErrorCategory, str]] = {
    # Throttling
    "50011": (ErrorCategory.RATE_LIMIT, "Rate limit reached"),
    "50013": (ErrorCategory.RATE_LIMIT, "System busy"),

    # Credentials and environment
    "50101": (ErrorCategory.AUTHENTICATION, "APIKey does not match current environment"),
    "50102": (ErrorCategory.AUTHENTICATION, "Timestamp request expired"),
    "50103": (ErrorCategory.AUTHENTICATION, "OK-ACCESS-KEY header missing"),
    "50104": (ErrorCategory.AUTHENTICATION, "OK-ACCESS-PASSPHRASE header missing"),
    "50105": (ErrorCategory.AUTHENTICATION, "OK-ACCESS-PASSPHRASE incorrect"),
    "50106": (ErrorCategory.AUTHENTICATION, "OK-ACCESS-SIGN header missing"),
    "50107": (ErrorCategory.AUTHENTICATION, "OK-ACCESS-TIMESTAMP header missing"),
    "50110": (ErrorCategory.AUTHENTICATION, "IP not whitelisted"),
    "50111": (ErrorCategory.AUTHENTICATION, "Invalid OK-ACCESS-KEY"),
    "50113": (ErrorCategory.AUTHENTICATION, "Invalid signature"),

    # Order parameters
    "51000": (ErrorCategory.INVALID_ORDER, "Parameter error"),
    "51001": (ErrorCategory.SYMBOL_NOT_FOUND, "Instrument does not exist"),
    "51006": (ErrorCategory.INVALID_PRICE, "Order price out of limit"),
    "51008": (ErrorCategory.INSUFFICIENT_FUNDS, "Insufficient balance"),
    "51020": (ErrorCategory.INVALID_QUANTITY, "Order amount below minimum"),
    "51121": (ErrorCategory.INVALID_QUANTITY, "Order size not a multiple of lot size"),
    "51119": (ErrorCategory.INSUFFICIENT_MARGIN, "Insufficient margin"),
    "51131": (ErrorCategory.INSUFFICIENT_MARGIN, "Insufficient account balance"),
    "51603": (ErrorCategory.ORDER_NOT_FOUND, "Order does not exist"),

    # Positions
    "51169": (ErrorCategory.POSITION_NOT_FOUND, "No position in this direction to reduce or close"),
    "51004": (ErrorCategory.MAX_POSITION, "Order amount exceeds leverage tier limit"),
    "51010": (ErrorCategory.POSITION_MODE, "Operation not supported under current account mode"),
    "51115": (ErrorCategory.POSITION_MODE, "posSide error for current position mode"),

    # Exchange side
    "50000": (ErrorCategory.INVALID_ORDER, "Body cannot be empty"),
    "50001": (ErrorCategory.EXCHANGE_ERROR, "Service temporarily unavailable"),
    "50004": (ErrorCategory.TIMEOUT, "Endpoint request timeout"),
    "50026": (ErrorCategory.EXCHANGE_ERROR, "System error"),
}


def map_okx_error(
    code: str,
    message: str,
    http_status: Optional[int] = None,
    operation: Optional[str] = None,
    symbol: Optional[str] = None,
) -> ExchangeError:
    """
    Normalize an OKX error.

    Args:
        code: OKX code (top-level code or order-level sCode)
        message: OKX msg / sMsg
        http_status: HTTP status, used when the code is unknown
        operation: Client operation name for context
        symbol: Instrument for context

    Returns:
        Normalized ExchangeError
    """
    code = str(code)
    if code in OKX_ERROR_MAP:
        category, _ = OKX_ERROR_MAP[code]
    elif http_status == 429:
        category = ErrorCategory.RATE_LIMIT
    elif http_status in (401, 403):
        category = ErrorCategory.AUTHENTICATION
    elif http_status is not None and http_status >= 500:
        category = ErrorCategory.EXCHANGE_ERROR
    else:
        category = ErrorCategory.UNKNOWN

    if not message and code in OKX_ERROR_MAP:
        message = OKX_ERROR_MAP[code][1]

    return ExchangeError(
        category=category,
        code=f"OKX_{code}",
        message=message or f"OKX error {code}",
        exchange_code=code,
        exchange_message=message,
        http_status=http_status,
        exchange_id="okx",
        operation=operation,
        symbol=symbol,
    )


# ============================================================
# TRANSPORT FAILURES
# ============================================================

def create_network_error(
    exchange_id: str,
    message: str,
    operation: Optional[str] = None,
) -> ExchangeError:
    return ExchangeError(
        category=ErrorCategory.NETWORK,
        code=f"{exchange_id.upper()}_NETWORK_ERROR",
        message=message,
        exchange_id=exchange_id,
        operation=operation,
    )


def create_timeout_error(
    exchange_id: str,
    timeout_ms: int,
    operation: Optional[str] = None,
) -> ExchangeError:
    return ExchangeError(
        category=ErrorCategory.TIMEOUT,
        code=f"{exchange_id.upper()}_TIMEOUT",
        message=f"Request timed out after {timeout_ms}ms",
        exchange_id=exchange_id,
        operation=operation,
    )


# ============================================================
# EXCEPTION SELECTION
# ============================================================

def upstream_error_for(payload: ExchangeError) -> UpstreamError:
    """Build the exception the engine raises for a payload."""
    if payload.category == ErrorCategory.AUTHENTICATION:
        return UpstreamAuthError(
            f"Exchange rejected credentials: {payload.message}",
            payload=payload,
        )
    if payload.category in TRANSIENT_CATEGORIES:
        return TransientNetworkError(str(payload), payload=payload)
    return UpstreamRejectionError(str(payload), payload=payload)
