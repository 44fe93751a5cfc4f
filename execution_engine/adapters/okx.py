"""
OKX Exchange Client.

============================================================
PURPOSE
============================================================
Production client for OKX USDT-margined perpetual swaps.

EXCHANGE SPECIFICS:
- V5 REST API over aiohttp
- HMAC-SHA256 signing with passphrase
- Instrument ids like BTC-USDT-SWAP
- Position modes: long_short_mode (hedge) and net_mode
- Demo trading selected by the x-simulated-trading header

ORDER FLOW:
    POST /api/v5/trade/order carries the order; the fill figures
    (accFillSz, avgPx, fillNotionalUsd) are read back from
    GET /api/v5/trade/order so OrderResult always holds the
    exchange's own numbers.

============================================================
API DOCUMENTATION
============================================================
https://www.okx.com/docs-v5/

============================================================
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp

from ..config import ExchangeConfig
from ..errors import UpstreamError
from ..types import (
    AccountConfig,
    InstrumentSpec,
    MarginMode,
    OpenPosition,
    OrderResult,
    OrderSide,
    OrderType,
    PositionSide,
    QUOTE_CURRENCY,
)
from .base import ExchangeClient, OrderParams
from .errors import (
    ErrorCategory,
    ExchangeError,
    create_network_error,
    create_timeout_error,
    map_okx_error,
    upstream_error_for,
)
from .logging_utils import ExchangeLogger
from .metrics import ClientMetrics


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

OKX_REST_URL = "https://www.okx.com"
OKX_AWS_URL = "https://aws.okx.com"

OKX_INST_SWAP = "SWAP"

OKX_POS_LONG = "long"
OKX_POS_SHORT = "short"
OKX_POS_NET = "net"

ENDPOINT_TICKERS = "/api/v5/market/tickers"
ENDPOINT_INSTRUMENTS = "/api/v5/public/instruments"
ENDPOINT_POSITIONS = "/api/v5/account/positions"
ENDPOINT_ACCOUNT_CONFIG = "/api/v5/account/config"
ENDPOINT_ORDER = "/api/v5/trade/order"


# ============================================================
# SYMBOL CONVERSION
# ============================================================

def to_inst_id(symbol: str, quote: str = QUOTE_CURRENCY) -> str:
    """
    Convert a symbol to an OKX swap instrument id.

    Accepts BTC/USDT:USDT, BTC/USDT, BTCUSDT, BTC-USDT-SWAP or BTC.
    """
    symbol = symbol.strip().upper()
    if symbol.endswith("-SWAP"):
        return symbol
    base = symbol.split(":")[0]
    if "/" in base:
        coin, quote = base.split("/", 1)
    elif "-" in base:
        coin, quote = base.split("-", 1)
    elif base.endswith(quote) and len(base) > len(quote):
        coin = base[: -len(quote)]
    else:
        coin = base
    return f"{coin}-{quote}-SWAP"


def coin_from_inst_id(inst_id: str) -> str:
    return inst_id.split("-")[0]


def _dec(value: Any) -> Optional[Decimal]:
    """OKX sends numbers as strings, empty when not applicable."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


# ============================================================
# OKX CLIENT
# ============================================================

class OKXClient(ExchangeClient):
    """
    OKX V5 client for USDT perpetual swaps.

    Failures are raised as UpstreamError subclasses carrying the
    normalized payload. There is no retry here.
    """

    def __init__(self, config: Optional[ExchangeConfig] = None):
        """
        Args:
            config: Credentials and transport settings. Defaults to
                ExchangeConfig.from_env().
        """
        self._config = config or ExchangeConfig.from_env()
        self._base_url = OKX_AWS_URL if self._config.use_aws else OKX_REST_URL
        self._session: Optional[aiohttp.ClientSession] = None

        self._metrics = ClientMetrics("okx")
        self._logger = ExchangeLogger("okx")

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def exchange_id(self) -> str:
        return "okx"

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self.is_connected:
            return
        self._config.require_credentials()
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        mode = "demo" if self._config.sandbox else "live"
        self._logger.info(f"Session opened ({mode}, {self._base_url})")

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
            self._logger.info("Session closed")

    # --------------------------------------------------------
    # SIGNING
    # --------------------------------------------------------

    def _sign(self, timestamp: str, method: str, path: str, body: str = "") -> str:
        """BASE64(HMAC-SHA256(timestamp + METHOD + path?query + body))."""
        message = f"{timestamp}{method.upper()}{path}{body}"
        digest = hmac.new(
            self._config.api_secret.encode(),
            message.encode(),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode()

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _headers(self, method: str, path: str, body: str) -> Dict[str, str]:
        timestamp = self._timestamp()
        headers = {
            "Content-Type": "application/json",
            "OK-ACCESS-KEY": self._config.api_key,
            "OK-ACCESS-SIGN": self._sign(timestamp, method, path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self._config.passphrase,
        }
        if self._config.sandbox:
            headers["x-simulated-trading"] = "1"
        return headers

    # --------------------------------------------------------
    # REQUEST HANDLING
    # --------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Send a signed request and return the response's data list.

        Raises:
            UpstreamError subclass for transport failures and any
            non-zero OKX code
        """
        operation = operation or endpoint.rsplit("/", 1)[-1]
        if not self.is_connected:
            raise upstream_error_for(create_network_error("okx", "Client not connected", operation))

        path = endpoint
        if params:
            path = f"{endpoint}?{urlencode(params)}"
        url = f"{self._base_url}{path}"
        body_str = json.dumps(body) if body else ""
        headers = self._headers(method, path, body_str)

        request_id = self._logger.log_request(
            operation=operation,
            method=method,
            endpoint=endpoint,
            headers=headers,
            params=params,
            body=body,
        )
        start = time.monotonic()

        try:
            async with self._session.request(
                method, url, headers=headers, data=body_str or None
            ) as resp:
                try:
                    payload = await resp.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError):
                    payload = {"code": str(resp.status), "msg": (await resp.text())[:200]}
                return self._handle_response(
                    payload, resp.status, request_id, endpoint, operation, start
                )
        except asyncio.TimeoutError:
            latency_ms = (time.monotonic() - start) * 1000
            self._metrics.record_request(
                endpoint, latency_ms, success=False, error_category=ErrorCategory.TIMEOUT.value
            )
            error = create_timeout_error("okx", int(self._config.timeout_seconds * 1000), operation)
            self._logger.warning(f"{operation}: {error.message}")
            raise upstream_error_for(error)
        except aiohttp.ClientError as e:
            latency_ms = (time.monotonic() - start) * 1000
            self._metrics.record_request(
                endpoint, latency_ms, success=False, error_category=ErrorCategory.NETWORK.value
            )
            self._logger.warning(f"{operation}: network error: {e}")
            raise upstream_error_for(create_network_error("okx", str(e), operation)) from e

    def _handle_response(
        self,
        payload: Dict[str, Any],
        status: int,
        request_id: str,
        endpoint: str,
        operation: str,
        start: float,
    ) -> List[Dict[str, Any]]:
        latency_ms = (time.monotonic() - start) * 1000
        code = str(payload.get("code", "0"))
        data = payload.get("data") or []

        if code == "0" and status < 400:
            self._metrics.record_request(endpoint, latency_ms, success=True, status_code=status)
            self._logger.log_response(operation, request_id, status, latency_ms, success=True)
            return data

        error = self._error_from_payload(payload, status, operation)
        self._metrics.record_request(
            endpoint,
            latency_ms,
            success=False,
            status_code=status,
            error_category=error.category.value,
            exchange_code=error.exchange_code,
        )
        self._logger.log_response(
            operation,
            request_id,
            status,
            latency_ms,
            success=False,
            error_code=error.code,
            error_message=error.message,
        )
        raise upstream_error_for(error)

    @staticmethod
    def _error_from_payload(payload: Dict[str, Any], status: int, operation: str) -> ExchangeError:
        """Prefer the order-level sCode when the batch-style envelope carries one."""
        for item in payload.get("data") or []:
            if isinstance(item, dict) and item.get("sCode") not in (None, "", "0"):
                return map_okx_error(item["sCode"], item.get("sMsg", ""), status, operation=operation)
        return map_okx_error(str(payload.get("code", status)), payload.get("msg", ""), status, operation=operation)

    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------

    async def fetch_tickers(self, inst_ids: List[str]) -> Dict[str, Decimal]:
        wanted = {to_inst_id(i) for i in inst_ids}
        data = await self._request(
            "GET", ENDPOINT_TICKERS, params={"instType": OKX_INST_SWAP}, operation="fetch_tickers"
        )
        prices: Dict[str, Decimal] = {}
        for ticker in data:
            inst_id = ticker.get("instId", "")
            last = _dec(ticker.get("last"))
            if inst_id in wanted and last is not None:
                prices[inst_id] = last
        return prices

    async def fetch_instruments(
        self,
        inst_ids: Optional[List[str]] = None,
    ) -> Dict[str, InstrumentSpec]:
        params = {"instType": OKX_INST_SWAP}
        wanted = {to_inst_id(i) for i in inst_ids} if inst_ids else None
        if wanted and len(wanted) == 1:
            params["instId"] = next(iter(wanted))

        data = await self._request("GET", ENDPOINT_INSTRUMENTS, params=params, operation="fetch_instruments")
        specs: Dict[str, InstrumentSpec] = {}
        for inst in data:
            inst_id = inst.get("instId", "")
            if wanted is not None and inst_id not in wanted:
                continue
            specs[inst_id] = InstrumentSpec(
                inst_id=inst_id,
                contract_value=_dec(inst.get("ctVal")) or Decimal("1"),
                lot_size=_dec(inst.get("lotSz")) or Decimal("1"),
                min_size=_dec(inst.get("minSz")) or Decimal("1"),
                tick_size=_dec(inst.get("tickSz")) or Decimal("0"),
            )
        return specs

    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------

    async def fetch_positions(self) -> List[OpenPosition]:
        data = await self._request(
            "GET", ENDPOINT_POSITIONS, params={"instType": OKX_INST_SWAP}, operation="fetch_positions"
        )
        positions = []
        for raw in data:
            position = self._parse_position(raw)
            if position is not None:
                positions.append(position)
        return positions

    @staticmethod
    def _parse_position(raw: Dict[str, Any]) -> Optional[OpenPosition]:
        """None for flat rows and for swaps not margined in QUOTE_CURRENCY."""
        inst_id = raw.get("instId", "")
        if not inst_id.endswith(f"-{QUOTE_CURRENCY}-SWAP"):
            logger.debug(f"Skipping position on {inst_id!r}: not a {QUOTE_CURRENCY} swap")
            return None

        size = _dec(raw.get("pos")) or Decimal("0")
        if size == 0:
            return None

        pos_side = raw.get("posSide", OKX_POS_NET)
        if pos_side == OKX_POS_LONG:
            side = PositionSide.LONG
        elif pos_side == OKX_POS_SHORT:
            side = PositionSide.SHORT
        else:
            side = PositionSide.LONG if size > 0 else PositionSide.SHORT

        margin_mode = None
        if raw.get("mgnMode") in (MarginMode.CROSS.value, MarginMode.ISOLATED.value):
            margin_mode = MarginMode(raw["mgnMode"])

        return OpenPosition(
            coin=coin_from_inst_id(inst_id),
            side=side,
            contracts=abs(size),
            notional=_dec(raw.get("notionalUsd")) or Decimal("0"),
            leverage=_dec(raw.get("lever")) or Decimal("1"),
            unrealized_pnl=_dec(raw.get("upl")) or Decimal("0"),
            margin_mode=margin_mode,
            inst_id=inst_id,
            entry_price=_dec(raw.get("avgPx")),
            mark_price=_dec(raw.get("markPx")),
            liquidation_price=_dec(raw.get("liqPx")),
        )

    async def fetch_account_config(self) -> AccountConfig:
        data = await self._request("GET", ENDPOINT_ACCOUNT_CONFIG, operation="fetch_account_config")
        if not data:
            raise upstream_error_for(map_okx_error("", "Empty account config response", operation="fetch_account_config"))
        raw = data[0]
        return AccountConfig(position_mode=raw.get("posMode", ""), raw=raw)

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    @staticmethod
    def build_order_body(
        inst_id: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Optional[Decimal],
        params: OrderParams,
    ) -> Dict[str, Any]:
        """Native order body. Optional fields are left out, not sent empty."""
        body: Dict[str, Any] = {
            "instId": inst_id,
            "tdMode": params.margin_mode.value,
            "side": side.value,
            "ordType": order_type.value,
            "sz": str(quantity),
        }
        if order_type is OrderType.LIMIT and price is not None:
            body["px"] = str(price)
        if params.position_side in (PositionSide.LONG, PositionSide.SHORT):
            body["posSide"] = params.position_side.value
        if params.reduce_only:
            body["reduceOnly"] = True
        if params.client_order_id:
            body["clOrdId"] = params.client_order_id
        return body

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
        inst_id = to_inst_id(symbol)
        body = self.build_order_body(inst_id, side, order_type, quantity, price, params)

        try:
            data = await self._request("POST", ENDPOINT_ORDER, body=body, operation="create_order")
        except UpstreamError as e:
            self._metrics.record_order(accepted=False, exchange_code=e.exchange_code)
            self._logger.log_order(
                symbol=inst_id,
                side=side.value,
                order_type=order_type.value,
                size=body["sz"],
                price=body.get("px"),
                position_side=body.get("posSide"),
                error_code=e.payload.code if e.payload else type(e).__name__,
                error_message=e.message,
            )
            raise

        ack = data[0] if data else {}
        order_id = ack.get("ordId", "")
        self._metrics.record_order(accepted=True)
        self._logger.log_order(
            symbol=inst_id,
            side=side.value,
            order_type=order_type.value,
            size=body["sz"],
            price=body.get("px"),
            position_side=body.get("posSide"),
            exchange_order_id=order_id,
        )

        result = OrderResult(
            exchange_order_id=order_id,
            client_order_id=ack.get("clOrdId") or params.client_order_id,
            status="submitted",
            symbol=inst_id,
            raw={"ack": ack},
        )
        return await self._fill_details(inst_id, result)

    async def _fill_details(self, inst_id: str, result: OrderResult) -> OrderResult:
        """
        Read the fill figures back from the order details endpoint.

        The order is already live at this point, so a failed read is
        logged and the acknowledgement returned without fill data.
        """
        try:
            data = await self._request(
                "GET",
                ENDPOINT_ORDER,
                params={"instId": inst_id, "ordId": result.exchange_order_id},
                operation="fetch_order",
            )
        except UpstreamError as e:
            self._logger.warning(
                f"Order {result.exchange_order_id} placed but details unavailable: {e.message}"
            )
            return result

        if not data:
            return result
        details = data[0]
        result.filled_quantity = _dec(details.get("accFillSz")) or Decimal("0")
        result.average_price = _dec(details.get("avgPx"))
        result.cost = _dec(details.get("fillNotionalUsd"))
        result.status = details.get("state", result.status)
        result.raw["details"] = details
        return result
