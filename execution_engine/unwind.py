"""
Execution Engine - Batch Unwind.

============================================================
PURPOSE
============================================================
Closes every open position in parallel and reports one outcome
per position.

============================================================
PHASES
============================================================
IDLE -> FETCHING -> DISPATCHING -> AGGREGATING -> DONE

FETCHING     read open positions; none -> NOTHING_TO_CLOSE
DISPATCHING  resolve the position mode once, derive a closing
             intent per position, submit all of them at once
AGGREGATING  wait for every close to settle, success or not
DONE         report counts and per-position outcomes

The phase belongs to the most recently started run. An older run
still settling in parallel does not move it.

============================================================
CLOSING INTENT
============================================================
- side:          opposite of the position side
- quantity:      the position's full contract count
- position side: the position's side in hedge mode, unset in net
- reduce-only:   false; an opposite order of matching size works
                 the same way in both position modes
- margin mode:   the position's, cross when not reported

A failing close never cancels, delays or rolls back its
siblings. Re-running an unwind is safe: positions already
closed are simply absent from the next fetch.

close_position() closes a single named leg with the same
closing intent. A missing leg is reported as an outcome with
error_type POSITION_NOT_FOUND, not raised.

============================================================
"""

import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional

from .adapters.base import ExchangeClient
from .config import UnwindConfig
from .errors import ExecutionError, ValidationError
from .order_coordinator import OrderCoordinator
from .position_mode import PositionModeResolver
from .types import (
    MarginMode,
    OpenPosition,
    OrderType,
    PositionMode,
    PositionSide,
    TradingIntent,
    UnwindOutcome,
    UnwindReport,
)


logger = logging.getLogger(__name__)


POSITION_NOT_FOUND = "PositionNotFound"


class UnwindPhase(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    DONE = "done"


def closing_intent_for(position: OpenPosition, mode: PositionMode) -> TradingIntent:
    """Market order that closes the whole of position."""
    return TradingIntent(
        symbol=position.symbol,
        side=position.side.closing_side,
        order_type=OrderType.MARKET,
        quantity=position.contracts,
        position_side=position.side if mode is PositionMode.HEDGE else PositionSide.UNSET,
        reduce_only=False,
        margin_mode=position.margin_mode or MarginMode.CROSS,
    )


class BatchUnwindEngine:
    """
    Close-all engine.

    Example:
        engine = BatchUnwindEngine(client)
        report = await engine.unwind_all()
        if report.is_failure:
            ...
    """

    def __init__(
        self,
        client: ExchangeClient,
        resolver: Optional[PositionModeResolver] = None,
        coordinator: Optional[OrderCoordinator] = None,
        config: Optional[UnwindConfig] = None,
    ):
        self._client = client
        self._resolver = resolver or PositionModeResolver(client)
        self._coordinator = coordinator or OrderCoordinator(client)
        self._config = config or UnwindConfig()
        self._phase = UnwindPhase.IDLE
        self._latest_run = 0

    @property
    def phase(self) -> UnwindPhase:
        """Phase of the most recently started run."""
        return self._phase

    def _enter(self, run: int, phase: UnwindPhase) -> None:
        if run != self._latest_run:
            return
        logger.debug(f"Unwind run {run} phase {self._phase.value} -> {phase.value}")
        self._phase = phase

    async def unwind_all(self) -> UnwindReport:
        """
        Close every open position.

        Returns:
            UnwindReport; partial success is not a failure

        Raises:
            UpstreamError: the position list or account mode could
                not be read. Nothing was submitted in that case.
        """
        start = time.monotonic()
        self._latest_run += 1
        run = self._latest_run
        self._enter(run, UnwindPhase.FETCHING)
        try:
            positions = await self._client.fetch_positions()
        except Exception:
            self._enter(run, UnwindPhase.IDLE)
            raise

        if not positions:
            self._enter(run, UnwindPhase.DONE)
            logger.info("Unwind: no open positions")
            return UnwindReport.from_outcomes([], duration_ms=(time.monotonic() - start) * 1000)

        self._enter(run, UnwindPhase.DISPATCHING)
        try:
            mode = await self._resolver.resolve()
        except Exception:
            self._enter(run, UnwindPhase.IDLE)
            raise

        logger.info(f"Unwind: closing {len(positions)} positions (mode={mode.value})")
        tasks = [self._close(position, mode) for position in positions]

        self._enter(run, UnwindPhase.AGGREGATING)
        settled = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: List[UnwindOutcome] = []
        for position, result in zip(positions, settled):
            if isinstance(result, UnwindOutcome):
                outcomes.append(result)
            else:
                # _close records its own failures; reaching here means it raised
                logger.error(f"Unwind: close task for {position.coin} raised {result!r}")
                outcomes.append(UnwindOutcome(
                    coin=position.coin,
                    success=False,
                    error_message=str(result) or type(result).__name__,
                    error_type=type(result).__name__,
                ))

        report = UnwindReport.from_outcomes(
            outcomes,
            position_mode=mode,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        self._enter(run, UnwindPhase.DONE)
        logger.info(
            f"Unwind finished: {report.status.value} "
            f"succeeded={report.succeeded} failed={report.failed} "
            f"in {report.duration_ms:.0f}ms"
        )
        return report

    async def close_position(self, coin: str, side: PositionSide) -> UnwindOutcome:
        """
        Close one named leg in full.

        Args:
            coin: Base coin, e.g. BTC
            side: LONG or SHORT

        Returns:
            UnwindOutcome; error_type is POSITION_NOT_FOUND when no
            open leg matches, in which case nothing was submitted

        Raises:
            ValidationError: side is not LONG or SHORT
            UpstreamError: the position list or account mode could
                not be read
        """
        if not isinstance(side, PositionSide):
            try:
                side = PositionSide(str(side).lower())
            except ValueError:
                side = PositionSide.UNSET
        if side is PositionSide.UNSET:
            raise ValidationError("side must be long or short", field="side")
        coin = coin.strip().upper()

        positions = await self._client.fetch_positions()
        target = next((p for p in positions if p.coin == coin and p.side is side), None)
        if target is None:
            logger.info(f"Close {coin} {side.value}: no such open position")
            return UnwindOutcome(
                coin=coin,
                success=False,
                error_message=f"No open {side.value} position for {coin}",
                error_type=POSITION_NOT_FOUND,
            )

        mode = await self._resolver.resolve()
        logger.info(f"Closing {coin} {side.value} {target.contracts} (mode={mode.value})")
        return await self._close(target, mode)

    async def _close(self, position: OpenPosition, mode: PositionMode) -> UnwindOutcome:
        """Close one position, turning any failure into an outcome."""
        intent = closing_intent_for(position, mode)
        try:
            placement = self._coordinator.place(intent, mode)
            if self._config.order_timeout_seconds is not None:
                result = await asyncio.wait_for(placement, self._config.order_timeout_seconds)
            else:
                result = await placement
        except asyncio.TimeoutError:
            message = f"Close timed out after {self._config.order_timeout_seconds}s"
            logger.warning(f"Unwind: {position.coin} {message}")
            return UnwindOutcome(
                coin=position.coin,
                success=False,
                error_message=message,
                error_type="TimeoutError",
                side=intent.side,
                contracts=intent.quantity,
            )
        except ExecutionError as e:
            logger.warning(f"Unwind: {position.coin} close failed: {e.message}")
            return UnwindOutcome(
                coin=position.coin,
                success=False,
                error_message=e.message,
                error_type=type(e).__name__,
                side=intent.side,
                contracts=intent.quantity,
            )
        except Exception as e:
            logger.exception(f"Unwind: unexpected error closing {position.coin}: {e}")
            return UnwindOutcome(
                coin=position.coin,
                success=False,
                error_message=str(e) or type(e).__name__,
                error_type=type(e).__name__,
                side=intent.side,
                contracts=intent.quantity,
            )

        logger.info(
            f"Unwind: closed {position.coin} {position.side.value} "
            f"{position.contracts} (order {result.exchange_order_id})"
        )
        return UnwindOutcome(
            coin=position.coin,
            success=True,
            order_id=result.exchange_order_id,
            side=intent.side,
            contracts=intent.quantity,
        )
