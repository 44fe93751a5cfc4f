"""
Exchange Client - Secure Logging.

============================================================
PURPOSE
============================================================
Structured request/response/order logging for exchange
clients with credentials masked before anything is written.

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys, secrets or passphrases
2. Mask the OK-ACCESS-* signing headers
3. Log request bodies as a short hash only

============================================================
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional


SENSITIVE_HEADERS = {
    "ok-access-key",
    "ok-access-sign",
    "ok-access-passphrase",
    "authorization",
}

SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "secret_key",
    "password",
    "passphrase",
    "sign",
    "signature",
}


# ============================================================
# MASKING
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """Keep the first few characters of a secret, hide the rest."""
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not params:
        return {}
    masked: Dict[str, Any] = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        else:
            masked[key] = value
    return masked


def body_hash(body: Any) -> Optional[str]:
    """Short SHA-256 of a request body, for correlating without logging it."""
    if not body:
        return None
    if isinstance(body, (dict, list)):
        text = json.dumps(body, sort_keys=True, default=str)
    else:
        text = str(body)
    return hashlib.sha256(text.encode()).hexdigest()[:16]


def _compact(entry: Dict[str, Any]) -> str:
    return json.dumps({k: v for k, v in entry.items() if v is not None}, default=str)


# ============================================================
# CLIENT LOGGER
# ============================================================

class ExchangeLogger:
    """
    Logger wrapper used by exchange clients.

    Every line is prefixed with the exchange id. Request lines
    carry a sequential id so responses can be matched to them.
    """

    def __init__(self, exchange_id: str, logger_name: Optional[str] = None):
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(logger_name or f"execution_engine.exchange.{exchange_id}")
        self._request_counter = 0

    def _next_request_id(self) -> str:
        self._request_counter += 1
        return f"{self._exchange_id}-{self._request_counter}"

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def log_request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> str:
        """
        Log an outgoing request.

        Returns:
            Request id for correlation with log_response
        """
        request_id = self._next_request_id()
        self._logger.debug("REQUEST: " + _compact({
            "timestamp": self._now(),
            "request_id": request_id,
            "operation": operation,
            "method": method,
            "endpoint": endpoint,
            "headers": mask_headers(headers) or None,
            "params": mask_params(params) or None,
            "body_hash": body_hash(body),
        }))
        return request_id

    def log_response(
        self,
        operation: str,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        line = _compact({
            "timestamp": self._now(),
            "request_id": request_id,
            "operation": operation,
            "status_code": status_code,
            "latency_ms": round(latency_ms, 2),
            "success": success,
            "error_code": error_code,
            "error_message": error_message[:200] if error_message else None,
        })
        if success:
            self._logger.debug(f"RESPONSE: {line}")
        else:
            self._logger.warning(f"RESPONSE_ERROR: {line}")

    def log_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        size: str,
        price: Optional[str] = None,
        position_side: Optional[str] = None,
        exchange_order_id: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        line = _compact({
            "timestamp": self._now(),
            "exchange_id": self._exchange_id,
            "symbol": symbol,
            "side": side,
            "order_type": order_type,
            "size": size,
            "price": price,
            "position_side": position_side,
            "exchange_order_id": exchange_order_id,
            "error_code": error_code,
            "error_message": error_message[:200] if error_message else None,
        })
        if error_code:
            self._logger.warning(f"ORDER_ERROR: {line}")
        else:
            self._logger.info(f"ORDER: {line}")

    def info(self, message: str) -> None:
        self._logger.info(f"[{self._exchange_id}] {message}")

    def warning(self, message: str) -> None:
        self._logger.warning(f"[{self._exchange_id}] {message}")

    def error(self, message: str, exc_info: bool = False) -> None:
        self._logger.error(f"[{self._exchange_id}] {message}", exc_info=exc_info)

    def debug(self, message: str) -> None:
        self._logger.debug(f"[{self._exchange_id}] {message}")
