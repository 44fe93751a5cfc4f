"""
Exchange Client Tests.

============================================================
PURPOSE
============================================================
Unit tests for the exchange clients and their support code.

TEST CATEGORIES:
- Factory tests: client selection
- Error mapping tests: OKX code translation
- Metrics tests: metrics collection
- Logging tests: credential masking
- Mock client tests
- OKX client tests: symbols, signing, parsing, order flow

============================================================
"""

import base64
import hashlib
import hmac
import time
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from core.exceptions import MissingConfigError
from execution_engine.adapters import (
    # Factory
    create_client,
    # Base
    OrderParams,
    # Errors
    ErrorCategory,
    map_okx_error,
    create_network_error,
    create_timeout_error,
    upstream_error_for,
    # Metrics
    ClientMetrics,
    # Logging
    ExchangeLogger,
    mask_value,
    mask_headers,
    mask_params,
    # Clients
    MockConfig,
    MockExchangeClient,
    OKXClient,
    coin_from_inst_id,
    to_inst_id,
)
from execution_engine.config import ExchangeConfig, ExecutionEngineConfig
from execution_engine.errors import (
    TransientNetworkError,
    UpstreamAuthError,
    UpstreamRejectionError,
)
from execution_engine.types import (
    MarginMode,
    OpenPosition,
    OrderSide,
    OrderType,
    PositionSide,
)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def okx_config():
    return ExchangeConfig(api_key="test_key_123456", api_secret="test_secret", passphrase="test_pass", sandbox=True)


@pytest.fixture
def okx(okx_config):
    return OKXClient(okx_config)


# ============================================================
# FACTORY TESTS
# ============================================================

class TestFactory:
    """Tests for create_client."""

    def test_dry_run_uses_mock(self):
        client = create_client(ExecutionEngineConfig.for_testing())

        assert isinstance(client, MockExchangeClient)
        assert client.exchange_id == "mock"

    def test_live_uses_okx(self, okx_config):
        client = create_client(ExecutionEngineConfig(exchange=okx_config))

        assert isinstance(client, OKXClient)
        assert client.exchange_id == "okx"
        assert not client.is_connected

    def test_mock_config_is_used(self):
        client = create_client(
            ExecutionEngineConfig.for_testing(),
            MockConfig(position_mode="long_short_mode"),
        )

        assert client.config.position_mode == "long_short_mode"


# ============================================================
# ERROR MAPPING TESTS
# ============================================================

class TestOKXErrorMapping:
    """Tests for OKX error mapping."""

    def test_rate_limit_error(self):
        error = map_okx_error("50011", "Too Many Requests")

        assert error.category == ErrorCategory.RATE_LIMIT
        assert error.is_transient
        assert error.code == "OKX_50011"

    def test_environment_mismatch_is_auth(self):
        """50101: demo keys against live or the other way round."""
        error = map_okx_error("50101", "APIKey does not match current environment.")

        assert error.category == ErrorCategory.AUTHENTICATION
        assert not error.is_transient

    def test_insufficient_margin(self):
        error = map_okx_error("51119", "Order failed, insufficient margin")

        assert error.category == ErrorCategory.INSUFFICIENT_MARGIN
        assert error.exchange_message == "Order failed, insufficient margin"

    def test_position_mode_error(self):
        assert map_okx_error("51115", "").category == ErrorCategory.POSITION_MODE

    def test_missing_message_uses_table(self):
        assert map_okx_error("51008", "").message == "Insufficient balance"

    @pytest.mark.parametrize("status,category", [
        (429, ErrorCategory.RATE_LIMIT),
        (401, ErrorCategory.AUTHENTICATION),
        (503, ErrorCategory.EXCHANGE_ERROR),
        (400, ErrorCategory.UNKNOWN),
    ])
    def test_http_status_fallback(self, status, category):
        assert map_okx_error("99999", "?", http_status=status).category == category


class TestUpstreamErrorFor:
    """Tests for exception selection."""

    def test_auth(self):
        error = upstream_error_for(map_okx_error("50101", ""))

        assert isinstance(error, UpstreamAuthError)
        assert "OKX_SANDBOX" in error.guidance
        assert error.exchange_code == "50101"

    def test_transient(self):
        error = upstream_error_for(create_timeout_error("okx", 10000, "create_order"))

        assert isinstance(error, TransientNetworkError)
        assert error.is_transient
        assert error.context["operation"] == "create_order"

    def test_rejection_keeps_raw_payload(self):
        error = upstream_error_for(map_okx_error("51008", "Insufficient USDT", operation="create_order"))

        assert isinstance(error, UpstreamRejectionError)
        assert error.raw["exchange_code"] == "51008"
        assert error.raw["exchange_message"] == "Insufficient USDT"
        assert error.to_dict()["context"]["category"] == "INSUFFICIENT_FUNDS"


class TestErrorHelpers:

    def test_create_network_error(self):
        error = create_network_error("okx", "Connection refused", "fetch_positions")

        assert error.category == ErrorCategory.NETWORK
        assert error.code == "OKX_NETWORK_ERROR"
        assert error.is_transient

    def test_create_timeout_error(self):
        error = create_timeout_error("okx", 5000)

        assert error.category == ErrorCategory.TIMEOUT
        assert "5000ms" in error.message


# ============================================================
# METRICS TESTS
# ============================================================

class TestClientMetrics:
    """Tests for ClientMetrics."""

    def test_record_request(self):
        metrics = ClientMetrics("okx")

        metrics.record_request("/api/v5/trade/order", 100.0, success=True, status_code=200)
        metrics.record_request("/api/v5/trade/order", 200.0, success=True, status_code=200)

        summary = metrics.get_summary()
        assert summary["requests"]["total"] == 2
        assert summary["requests"]["success_rate"] == 1.0
        assert summary["latency"]["avg_ms"] == 150.0

    def test_record_failure(self):
        metrics = ClientMetrics("okx")

        metrics.record_request(
            "/api/v5/trade/order", 50.0, success=False,
            error_category="RATE_LIMIT", exchange_code="50011",
        )

        errors = metrics.get_summary()["errors"]
        assert errors["by_category"] == {"RATE_LIMIT": 1}
        assert errors["by_code"] == {"50011": 1}

    def test_record_orders(self):
        metrics = ClientMetrics("okx")

        metrics.record_order(accepted=True)
        metrics.record_order(accepted=False, exchange_code="51008")

        orders = metrics.get_summary()["orders"]
        assert orders == {"accepted": 1, "rejected": 1}

    def test_latency_by_endpoint(self):
        metrics = ClientMetrics("okx")
        metrics.record_request("/a", 10.0, success=True)
        metrics.record_request("/b", 30.0, success=True)

        by_endpoint = metrics.get_latency_by_endpoint()

        assert set(by_endpoint) == {"/a", "/b"}
        assert by_endpoint["/b"]["max_ms"] == 30.0

    def test_recent_requests_bounded(self):
        metrics = ClientMetrics("okx", max_recent=3)
        for i in range(5):
            metrics.record_request(f"/e{i}", 1.0, success=True)

        recent = metrics.get_recent_requests()

        assert [r["endpoint"] for r in recent] == ["/e2", "/e3", "/e4"]

    def test_reset(self):
        metrics = ClientMetrics("okx")
        metrics.record_request("/a", 1.0, success=True)

        metrics.reset()

        assert metrics.get_summary()["requests"]["total"] == 0


# ============================================================
# LOGGING TESTS
# ============================================================

class TestCredentialMasking:
    """Tests for credential masking."""

    def test_mask_value(self):
        masked = mask_value("abc123def456ghi789", show_chars=4)

        assert masked == "abc1...***"
        assert "def456" not in masked

    def test_mask_short_value(self):
        assert mask_value("abc") == "***"

    def test_mask_headers(self):
        headers = {
            "Content-Type": "application/json",
            "OK-ACCESS-KEY": "secret_api_key_12345",
            "OK-ACCESS-SIGN": "c2lnbmF0dXJlLXZhbHVl",
            "OK-ACCESS-PASSPHRASE": "my_passphrase",
        }

        masked = mask_headers(headers)

        assert masked["Content-Type"] == "application/json"
        assert "secret_api_key" not in masked["OK-ACCESS-KEY"]
        assert "bmF0dXJl" not in masked["OK-ACCESS-SIGN"]
        assert "passphrase" not in masked["OK-ACCESS-PASSPHRASE"]

    def test_mask_params(self):
        params = {
            "instId": "BTC-USDT-SWAP",
            "passphrase": "hunter2hunter2",
            "nested": {"secret": "topsecretvalue"},
        }

        masked = mask_params(params)

        assert masked["instId"] == "BTC-USDT-SWAP"
        assert "hunter2hunter2" not in str(masked["passphrase"])
        assert "topsecretvalue" not in str(masked["nested"])


class TestExchangeLogger:
    """Tests for ExchangeLogger."""

    def test_request_ids_are_sequential(self):
        logger = ExchangeLogger("okx")

        first = logger.log_request("create_order", "POST", "/api/v5/trade/order", headers={"OK-ACCESS-KEY": "k" * 20})
        second = logger.log_request("fetch_order", "GET", "/api/v5/trade/order")

        assert first == "okx-1"
        assert second == "okx-2"

    def test_secrets_never_logged(self, caplog):
        logger = ExchangeLogger("okx")

        with caplog.at_level("DEBUG"):
            logger.log_request(
                "create_order", "POST", "/api/v5/trade/order",
                headers={"OK-ACCESS-KEY": "supersecretkey123", "OK-ACCESS-PASSPHRASE": "passphrase999"},
            )

        assert "supersecretkey123" not in caplog.text
        assert "passphrase999" not in caplog.text

    def test_log_order(self):
        logger = ExchangeLogger("okx")

        # Should not raise
        logger.log_order(
            symbol="BTC-USDT-SWAP",
            side="buy",
            order_type="limit",
            size="1",
            price="50000",
            position_side="long",
            exchange_order_id="123",
        )


# ============================================================
# MOCK CLIENT TESTS
# ============================================================

class TestMockExchangeClient:
    """Tests for MockExchangeClient."""

    @pytest.mark.asyncio
    async def test_connection(self):
        client = MockExchangeClient()

        async with client:
            assert client.is_connected

        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_market_order_fills_and_reduces(self):
        client = MockExchangeClient(MockConfig(
            prices={"ETH-USDT-SWAP": Decimal("3000")},
            positions=[OpenPosition(coin="ETH", side=PositionSide.SHORT, contracts=Decimal("5"))],
        ))

        result = await client.create_order("ETH/USDT:USDT", OrderSide.BUY, OrderType.MARKET, Decimal("2"))

        assert result.filled_quantity == Decimal("2")
        assert result.average_price == Decimal("3000")
        assert result.cost == Decimal("6000")
        positions = await client.fetch_positions()
        assert positions[0].contracts == Decimal("3")

    @pytest.mark.asyncio
    async def test_limit_order_rests(self):
        client = MockExchangeClient()

        result = await client.create_order(
            "BTC", OrderSide.BUY, OrderType.LIMIT, Decimal("1"), price=Decimal("40000"),
        )

        assert result.status == "live"
        assert result.filled_quantity == Decimal("0")

    @pytest.mark.asyncio
    async def test_fail_next_is_one_shot(self):
        client = MockExchangeClient()
        client.fail_next("fetch_positions", RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await client.fetch_positions()

        assert await client.fetch_positions() == []
        assert len(client.calls_to("fetch_positions")) == 2

    @pytest.mark.asyncio
    async def test_tickers_filtered(self):
        client = MockExchangeClient(MockConfig(prices={"BTC-USDT-SWAP": Decimal("1")}))

        prices = await client.fetch_tickers(["BTC-USDT-SWAP", "XRP-USDT-SWAP"])

        assert prices == {"BTC-USDT-SWAP": Decimal("1")}


# ============================================================
# OKX CLIENT TESTS
# ============================================================

class TestSymbols:

    @pytest.mark.parametrize("symbol", ["BTC/USDT:USDT", "BTC/USDT", "BTCUSDT", "BTC-USDT-SWAP", "btc", "BTC-USDT"])
    def test_to_inst_id(self, symbol):
        assert to_inst_id(symbol) == "BTC-USDT-SWAP"

    def test_coin_from_inst_id(self):
        assert coin_from_inst_id("DOGE-USDT-SWAP") == "DOGE"


class TestOKXSigning:

    def test_sign(self, okx):
        expected = base64.b64encode(hmac.new(
            b"test_secret",
            b"2024-01-01T00:00:00.000ZGET/api/v5/account/config",
            hashlib.sha256,
        ).digest()).decode()

        assert okx._sign("2024-01-01T00:00:00.000Z", "get", "/api/v5/account/config") == expected

    def test_sandbox_header(self, okx):
        headers = okx._headers("GET", "/api/v5/account/config", "")

        assert headers["x-simulated-trading"] == "1"
        assert headers["OK-ACCESS-KEY"] == "test_key_123456"
        assert headers["OK-ACCESS-PASSPHRASE"] == "test_pass"

    def test_live_has_no_simulated_header(self):
        client = OKXClient(ExchangeConfig(api_key="k", api_secret="s", passphrase="p"))

        assert "x-simulated-trading" not in client._headers("GET", "/x", "")

    @pytest.mark.asyncio
    async def test_connect_requires_credentials(self):
        client = OKXClient(ExchangeConfig(api_key="k", api_secret="", passphrase="p"))

        with pytest.raises(MissingConfigError) as exc_info:
            await client.connect()

        assert exc_info.value.context["config_key"] == "OKX_SECRET"

    @pytest.mark.asyncio
    async def test_request_when_disconnected(self, okx):
        with pytest.raises(TransientNetworkError):
            await okx.fetch_account_config()


class TestOKXResponses:

    def test_success_returns_data(self, okx):
        data = okx._handle_response(
            {"code": "0", "data": [{"posMode": "net_mode"}]}, 200, "okx-1",
            "/api/v5/account/config", "fetch_account_config", time.monotonic(),
        )

        assert data == [{"posMode": "net_mode"}]
        assert okx.metrics.get_summary()["requests"]["success"] == 1

    def test_order_level_code_wins(self, okx):
        """The sCode inside data is more specific than the envelope code."""
        payload = {
            "code": "1",
            "msg": "Operation failed.",
            "data": [{"ordId": "", "sCode": "51008", "sMsg": "Order failed. Insufficient USDT margin"}],
        }

        with pytest.raises(UpstreamRejectionError) as exc_info:
            okx._handle_response(payload, 200, "okx-1", "/api/v5/trade/order", "create_order", time.monotonic())

        assert exc_info.value.exchange_code == "51008"
        assert "Insufficient USDT margin" in exc_info.value.message

    def test_auth_failure(self, okx):
        with pytest.raises(UpstreamAuthError):
            okx._handle_response(
                {"code": "50101", "msg": "APIKey does not match current environment.", "data": []},
                401, "okx-1", "/api/v5/account/config", "fetch_account_config", time.monotonic(),
            )


class TestOKXReads:

    @pytest.mark.asyncio
    async def test_fetch_account_config(self, okx):
        with patch.object(okx, "_request", AsyncMock(return_value=[{"posMode": "long_short_mode", "uid": "1"}])):
            config = await okx.fetch_account_config()

        assert config.position_mode == "long_short_mode"
        assert config.raw["uid"] == "1"

    @pytest.mark.asyncio
    async def test_fetch_positions(self, okx):
        data = [
            {"instId": "BTC-USDT-SWAP", "posSide": "long", "pos": "3", "mgnMode": "isolated",
             "notionalUsd": "1800.5", "lever": "10", "upl": "12.3", "avgPx": "60000", "markPx": "60010", "liqPx": ""},
            {"instId": "ETH-USDT-SWAP", "posSide": "net", "pos": "-4", "mgnMode": "cross"},
            {"instId": "SOL-USDT-SWAP", "posSide": "net", "pos": "0"},
        ]

        with patch.object(okx, "_request", AsyncMock(return_value=data)):
            positions = await okx.fetch_positions()

        assert len(positions) == 2
        btc, eth = positions
        assert btc.coin == "BTC"
        assert btc.side is PositionSide.LONG
        assert btc.contracts == Decimal("3")
        assert btc.margin_mode is MarginMode.ISOLATED
        assert btc.leverage == Decimal("10")
        assert btc.liquidation_price is None
        assert eth.side is PositionSide.SHORT
        assert eth.contracts == Decimal("4")

    @pytest.mark.asyncio
    async def test_fetch_positions_skips_coin_margined_swaps(self, okx):
        """Only USDT-margined swaps are returned, so close-all never trades the wrong instrument."""
        data = [
            {"instId": "BTC-USD-SWAP", "posSide": "long", "pos": "5", "mgnMode": "cross"},
            {"instId": "ETH-USDT-SWAP", "posSide": "long", "pos": "2", "mgnMode": "cross"},
        ]

        with patch.object(okx, "_request", AsyncMock(return_value=data)):
            positions = await okx.fetch_positions()

        assert [p.inst_id for p in positions] == ["ETH-USDT-SWAP"]
        assert positions[0].symbol == "ETH-USDT-SWAP"

    @pytest.mark.asyncio
    async def test_fetch_tickers(self, okx):
        data = [
            {"instId": "BTC-USDT-SWAP", "last": "60000.1"},
            {"instId": "ETH-USDT-SWAP", "last": "3000"},
            {"instId": "XRP-USDT-SWAP", "last": ""},
        ]

        with patch.object(okx, "_request", AsyncMock(return_value=data)):
            prices = await okx.fetch_tickers(["BTC/USDT:USDT", "XRP-USDT-SWAP"])

        assert prices == {"BTC-USDT-SWAP": Decimal("60000.1")}

    @pytest.mark.asyncio
    async def test_fetch_instruments(self, okx):
        data = [{"instId": "BTC-USDT-SWAP", "ctVal": "0.01", "lotSz": "0.01", "minSz": "0.01", "tickSz": "0.1"}]

        with patch.object(okx, "_request", AsyncMock(return_value=data)) as request:
            specs = await okx.fetch_instruments(["BTC-USDT-SWAP"])

        assert specs["BTC-USDT-SWAP"].contract_value == Decimal("0.01")
        assert request.call_args.kwargs["params"]["instId"] == "BTC-USDT-SWAP"


class TestOKXOrders:

    def test_net_body_omits_pos_side(self):
        body = OKXClient.build_order_body(
            "BTC-USDT-SWAP", OrderSide.BUY, OrderType.MARKET, Decimal("2"), None, OrderParams(),
        )

        assert body == {"instId": "BTC-USDT-SWAP", "tdMode": "cross", "side": "buy", "ordType": "market", "sz": "2"}

    def test_hedge_limit_body(self):
        params = OrderParams(
            margin_mode=MarginMode.ISOLATED,
            position_side=PositionSide.SHORT,
            reduce_only=True,
            client_order_id="abc",
        )

        body = OKXClient.build_order_body(
            "ETH-USDT-SWAP", OrderSide.SELL, OrderType.LIMIT, Decimal("1.5"), Decimal("2500"), params,
        )

        assert body["px"] == "2500"
        assert body["posSide"] == "short"
        assert body["reduceOnly"] is True
        assert body["clOrdId"] == "abc"
        assert body["tdMode"] == "isolated"

    def test_unset_position_side_is_omitted(self):
        body = OKXClient.build_order_body(
            "BTC-USDT-SWAP", OrderSide.BUY, OrderType.MARKET, Decimal("1"), None,
            OrderParams(position_side=PositionSide.UNSET),
        )

        assert "posSide" not in body

    @pytest.mark.asyncio
    async def test_create_order_reads_fill(self, okx):
        ack = [{"ordId": "312269865356374016", "clOrdId": "", "sCode": "0", "sMsg": ""}]
        details = [{"accFillSz": "2", "avgPx": "60000.5", "fillNotionalUsd": "1200.01", "state": "filled"}]
        request = AsyncMock(side_effect=[ack, details])

        with patch.object(okx, "_request", request):
            result = await okx.create_order("BTC/USDT:USDT", OrderSide.BUY, OrderType.MARKET, Decimal("2"))

        assert result.exchange_order_id == "312269865356374016"
        assert result.filled_quantity == Decimal("2")
        assert result.average_price == Decimal("60000.5")
        assert result.cost == Decimal("1200.01")
        assert result.status == "filled"
        assert request.call_args_list[0].kwargs["body"]["sz"] == "2"
        assert request.call_args_list[1].kwargs["params"]["ordId"] == "312269865356374016"
        assert okx.metrics.get_summary()["orders"]["accepted"] == 1

    @pytest.mark.asyncio
    async def test_details_failure_returns_ack(self, okx):
        """The order is live, so a failed details read must not raise."""
        ack = [{"ordId": "42", "sCode": "0"}]
        request = AsyncMock(side_effect=[ack, upstream_error_for(create_network_error("okx", "reset"))])

        with patch.object(okx, "_request", request):
            result = await okx.create_order("BTC", OrderSide.SELL, OrderType.MARKET, Decimal("1"))

        assert result.exchange_order_id == "42"
        assert result.status == "submitted"
        assert result.filled_quantity == Decimal("0")
        assert result.cost is None

    @pytest.mark.asyncio
    async def test_rejected_order(self, okx):
        error = upstream_error_for(map_okx_error("51008", "Insufficient USDT margin"))

        with patch.object(okx, "_request", AsyncMock(side_effect=error)):
            with pytest.raises(UpstreamRejectionError):
                await okx.create_order("BTC", OrderSide.BUY, OrderType.MARKET, Decimal("1"))

        summary = okx.metrics.get_summary()
        assert summary["orders"]["rejected"] == 1
        assert summary["errors"]["by_code"] == {"51008": 1}
