"""
Batch Unwind Tests.

============================================================
PURPOSE
============================================================
Tests for BatchUnwindEngine.

TEST CATEGORIES:
- Closing intent derivation
- Parallel dispatch and failure isolation
- Aggregate status
- Upstream failures before dispatch
- Closing a single named leg

============================================================
"""

import asyncio
import time
from decimal import Decimal

import pytest

from execution_engine.adapters import MockConfig, MockExchangeClient, map_okx_error, upstream_error_for
from execution_engine.config import UnwindConfig
from execution_engine.errors import TransientNetworkError, UpstreamRejectionError, ValidationError
from execution_engine.types import (
    MarginMode,
    OpenPosition,
    OrderSide,
    OrderType,
    PositionMode,
    PositionSide,
    UnwindStatus,
)
from execution_engine.unwind import POSITION_NOT_FOUND, BatchUnwindEngine, UnwindPhase, closing_intent_for


# ============================================================
# HELPERS
# ============================================================

def position(coin: str, side: PositionSide, contracts: str, margin_mode=None) -> OpenPosition:
    return OpenPosition(
        coin=coin,
        side=side,
        contracts=Decimal(contracts),
        margin_mode=margin_mode,
        inst_id=f"{coin}-USDT-SWAP",
    )


def rejection(message: str = "Insufficient margin") -> UpstreamRejectionError:
    return upstream_error_for(map_okx_error("51119", message, operation="create_order"))


# ============================================================
# CLOSING INTENT
# ============================================================

class TestClosingIntent:
    """Tests for closing_intent_for."""

    def test_long_closes_with_sell(self):
        intent = closing_intent_for(position("BTC", PositionSide.LONG, "5"), PositionMode.NET)

        assert intent.side is OrderSide.SELL
        assert intent.quantity == Decimal("5")
        assert intent.order_type is OrderType.MARKET
        assert intent.symbol == "BTC-USDT-SWAP"

    def test_symbol_follows_reported_instrument(self):
        """The close targets the instrument the position lives on, not one rebuilt from the coin."""
        pos = OpenPosition(coin="BTC", side=PositionSide.LONG, contracts=Decimal("1"), inst_id="BTC-USD-SWAP")

        assert closing_intent_for(pos, PositionMode.NET).symbol == "BTC-USD-SWAP"

    def test_symbol_without_instrument_uses_usdt_swap(self):
        pos = OpenPosition(coin="BTC", side=PositionSide.LONG, contracts=Decimal("1"))

        assert closing_intent_for(pos, PositionMode.NET).symbol == "BTC/USDT:USDT"

    def test_short_closes_with_buy(self):
        intent = closing_intent_for(position("ETH", PositionSide.SHORT, "3"), PositionMode.NET)

        assert intent.side is OrderSide.BUY

    def test_hedge_mode_tags_leg(self):
        intent = closing_intent_for(position("ETH", PositionSide.SHORT, "3"), PositionMode.HEDGE)

        assert intent.position_side is PositionSide.SHORT

    def test_net_mode_leaves_leg_unset(self):
        intent = closing_intent_for(position("ETH", PositionSide.SHORT, "3"), PositionMode.NET)

        assert intent.position_side is PositionSide.UNSET

    def test_not_reduce_only(self):
        intent = closing_intent_for(position("BTC", PositionSide.LONG, "1"), PositionMode.HEDGE)

        assert intent.reduce_only is False

    def test_margin_mode_defaults_to_cross(self):
        intent = closing_intent_for(position("BTC", PositionSide.LONG, "1"), PositionMode.NET)

        assert intent.margin_mode is MarginMode.CROSS

    def test_margin_mode_follows_position(self):
        pos = position("BTC", PositionSide.LONG, "1", margin_mode=MarginMode.ISOLATED)

        assert closing_intent_for(pos, PositionMode.NET).margin_mode is MarginMode.ISOLATED


# ============================================================
# UNWIND
# ============================================================

class TestUnwindAll:
    """Tests for unwind_all()."""

    @pytest.mark.asyncio
    async def test_nothing_to_close(self):
        """No positions: no mode lookup, no orders."""
        client = MockExchangeClient()
        engine = BatchUnwindEngine(client)

        report = await engine.unwind_all()

        assert report.status is UnwindStatus.NOTHING_TO_CLOSE
        assert report.succeeded == 0
        assert report.failed == 0
        assert not report.is_failure
        assert client.calls_to("fetch_account_config") == []
        assert client.calls_to("create_order") == []
        assert engine.phase is UnwindPhase.DONE

    @pytest.mark.asyncio
    async def test_single_long_closed(self):
        """A 5-contract long is closed by a sell of 5 contracts."""
        client = MockExchangeClient(MockConfig(positions=[position("BTC", PositionSide.LONG, "5")]))

        report = await BatchUnwindEngine(client).unwind_all()

        assert report.status is UnwindStatus.FULL_SUCCESS
        assert report.succeeded == 1
        order = client.orders[0]
        assert order["side"] is OrderSide.SELL
        assert order["quantity"] == Decimal("5")
        assert order["order_type"] is OrderType.MARKET
        assert await client.fetch_positions() == []

    @pytest.mark.asyncio
    async def test_partial_failure_is_isolated(self):
        """One failing close leaves its siblings untouched, and all run concurrently."""
        client = MockExchangeClient(MockConfig(
            positions=[
                position("AAA", PositionSide.LONG, "1"),
                position("BBB", PositionSide.LONG, "1"),
                position("CCC", PositionSide.SHORT, "1"),
            ],
            order_latency_by_coin={"AAA": 0.2, "BBB": 0.2, "CCC": 0.2},
            order_errors_by_coin={"BBB": rejection()},
        ))

        start = time.monotonic()
        report = await BatchUnwindEngine(client).unwind_all()
        elapsed = time.monotonic() - start

        assert report.status is UnwindStatus.PARTIAL_SUCCESS
        assert report.succeeded == 2
        assert report.failed == 1
        assert len(report.outcomes) == 3
        assert not report.is_failure
        assert elapsed < 0.5

        by_coin = {o.coin: o for o in report.outcomes}
        assert by_coin["AAA"].success and by_coin["CCC"].success
        assert by_coin["BBB"].success is False
        assert by_coin["BBB"].error_type == "UpstreamRejectionError"
        assert "Insufficient margin" in by_coin["BBB"].error_message

    @pytest.mark.asyncio
    async def test_all_fail(self):
        client = MockExchangeClient(MockConfig(
            positions=[position("BTC", PositionSide.LONG, "1"), position("ETH", PositionSide.LONG, "1")],
            order_errors_by_coin={"BTC": rejection(), "ETH": rejection()},
        ))

        report = await BatchUnwindEngine(client).unwind_all()

        assert report.status is UnwindStatus.FAILED
        assert report.is_failure
        assert report.failed == 2
        assert report.to_dict()["success"] is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_outcome(self):
        client = MockExchangeClient(MockConfig(
            positions=[position("BTC", PositionSide.LONG, "1"), position("ETH", PositionSide.LONG, "1")],
            order_errors_by_coin={"ETH": RuntimeError("socket closed")},
        ))

        report = await BatchUnwindEngine(client).unwind_all()

        assert report.status is UnwindStatus.PARTIAL_SUCCESS
        failed = [o for o in report.outcomes if not o.success][0]
        assert failed.coin == "ETH"
        assert failed.error_type == "RuntimeError"

    @pytest.mark.asyncio
    async def test_hedge_mode_sends_leg(self):
        client = MockExchangeClient(MockConfig(
            position_mode="long_short_mode",
            positions=[
                position("BTC", PositionSide.LONG, "2"),
                position("BTC", PositionSide.SHORT, "1"),
            ],
        ))

        report = await BatchUnwindEngine(client).unwind_all()

        assert report.position_mode is PositionMode.HEDGE
        legs = {(o["side"], o["params"].position_side) for o in client.orders}
        assert legs == {
            (OrderSide.SELL, PositionSide.LONG),
            (OrderSide.BUY, PositionSide.SHORT),
        }

    @pytest.mark.asyncio
    async def test_net_mode_omits_leg(self):
        client = MockExchangeClient(MockConfig(positions=[position("SOL", PositionSide.SHORT, "4")]))

        await BatchUnwindEngine(client).unwind_all()

        assert client.orders[0]["params"].position_side is None
        assert client.orders[0]["params"].margin_mode is MarginMode.CROSS

    @pytest.mark.asyncio
    async def test_mode_resolved_once(self):
        client = MockExchangeClient(MockConfig(
            positions=[position(c, PositionSide.LONG, "1") for c in ("BTC", "ETH", "SOL")],
        ))

        await BatchUnwindEngine(client).unwind_all()

        assert len(client.calls_to("fetch_account_config")) == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        client = MockExchangeClient(MockConfig(
            positions=[position("BTC", PositionSide.LONG, "1"), position("ETH", PositionSide.LONG, "1")],
            order_latency_by_coin={"ETH": 1.0},
        ))
        engine = BatchUnwindEngine(client, config=UnwindConfig(order_timeout_seconds=0.1))

        report = await engine.unwind_all()

        by_coin = {o.coin: o for o in report.outcomes}
        assert by_coin["BTC"].success
        assert by_coin["ETH"].error_type == "TimeoutError"
        assert report.status is UnwindStatus.PARTIAL_SUCCESS

    @pytest.mark.asyncio
    async def test_position_fetch_failure_propagates(self):
        client = MockExchangeClient()
        client.fail_next("fetch_positions", upstream_error_for(map_okx_error("50001", "")))

        with pytest.raises(TransientNetworkError):
            await BatchUnwindEngine(client).unwind_all()

        assert client.calls_to("create_order") == []

    @pytest.mark.asyncio
    async def test_mode_failure_submits_nothing(self):
        client = MockExchangeClient(MockConfig(positions=[position("BTC", PositionSide.LONG, "1")]))
        client.fail_next("fetch_account_config", upstream_error_for(map_okx_error("50101", "")))

        with pytest.raises(Exception):
            await BatchUnwindEngine(client).unwind_all()

        assert client.calls_to("create_order") == []

    @pytest.mark.asyncio
    async def test_rerun_is_safe(self):
        """A second unwind only sees what the first left open."""
        client = MockExchangeClient(MockConfig(
            positions=[position("BTC", PositionSide.LONG, "1"), position("ETH", PositionSide.LONG, "1")],
            order_errors_by_coin={"ETH": rejection()},
        ))
        engine = BatchUnwindEngine(client)
        await engine.unwind_all()

        client.config.order_errors_by_coin.clear()
        report = await engine.unwind_all()

        assert [o.coin for o in report.outcomes] == ["ETH"]
        assert report.status is UnwindStatus.FULL_SUCCESS

    @pytest.mark.asyncio
    async def test_report_dict(self):
        client = MockExchangeClient(MockConfig(positions=[position("BTC", PositionSide.LONG, "1")]))

        data = (await BatchUnwindEngine(client).unwind_all()).to_dict()

        assert data["success"] is True
        assert data["status"] == "full_success"
        assert data["position_mode"] == "net"
        assert data["outcomes"][0]["order_id"] == "mock-1"
        assert data["outcomes"][0]["side"] == "sell"

    @pytest.mark.asyncio
    async def test_phase_follows_latest_run(self):
        """An older run finishing first does not mark a newer one done."""
        client = MockExchangeClient(MockConfig(
            positions=[position("ETH", PositionSide.LONG, "1")],
            order_latency_by_coin={"ETH": 0.05, "BTC": 0.3},
        ))
        engine = BatchUnwindEngine(client)

        first = asyncio.create_task(engine.unwind_all())
        await asyncio.sleep(0.01)
        client.set_positions([position("BTC", PositionSide.LONG, "1")])
        second = asyncio.create_task(engine.unwind_all())
        await asyncio.sleep(0.01)

        await first
        assert engine.phase is UnwindPhase.AGGREGATING

        await second
        assert engine.phase is UnwindPhase.DONE


# ============================================================
# SINGLE POSITION
# ============================================================

class TestClosePosition:
    """Tests for close_position()."""

    @pytest.mark.asyncio
    async def test_closes_matching_leg_only(self):
        client = MockExchangeClient(MockConfig(
            position_mode="long_short_mode",
            positions=[
                position("BTC", PositionSide.LONG, "2"),
                position("BTC", PositionSide.SHORT, "3"),
            ],
        ))

        outcome = await BatchUnwindEngine(client).close_position("btc", PositionSide.SHORT)

        assert outcome.success
        assert outcome.side is OrderSide.BUY
        assert outcome.contracts == Decimal("3")
        order = client.calls_to("create_order")[0].args
        assert order["params"].position_side is PositionSide.SHORT
        assert order["params"].reduce_only is False
        assert [(p.side, p.contracts) for p in await client.fetch_positions()] == [(PositionSide.LONG, Decimal("2"))]

    @pytest.mark.asyncio
    async def test_net_mode_omits_leg(self):
        client = MockExchangeClient(MockConfig(positions=[position("ETH", PositionSide.LONG, "1")]))

        await BatchUnwindEngine(client).close_position("ETH", PositionSide.LONG)

        assert client.calls_to("create_order")[0].args["params"].position_side is None

    @pytest.mark.asyncio
    async def test_missing_leg_sends_nothing(self):
        client = MockExchangeClient(MockConfig(positions=[position("BTC", PositionSide.LONG, "1")]))

        outcome = await BatchUnwindEngine(client).close_position("BTC", PositionSide.SHORT)

        assert not outcome.success
        assert outcome.error_type == POSITION_NOT_FOUND
        assert client.calls_to("fetch_account_config") == []
        assert client.calls_to("create_order") == []

    @pytest.mark.asyncio
    async def test_rejection_becomes_outcome(self):
        client = MockExchangeClient(MockConfig(
            positions=[position("BTC", PositionSide.LONG, "1")],
            order_errors_by_coin={"BTC": rejection()},
        ))

        outcome = await BatchUnwindEngine(client).close_position("BTC", "long")

        assert not outcome.success
        assert outcome.error_type == "UpstreamRejectionError"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("side", [PositionSide.UNSET, "net"])
    async def test_side_must_name_a_leg(self, side):
        client = MockExchangeClient()

        with pytest.raises(ValidationError):
            await BatchUnwindEngine(client).close_position("BTC", side)

        assert client.calls == []
