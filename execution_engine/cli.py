"""
Execution Engine - CLI.

============================================================
RESPONSIBILITY
============================================================
Operator command line for the execution engine.

- Price and position queries
- Single order placement
- Closing one position or all of them

Output is JSON on stdout; logs go through setup_logging.

============================================================
USAGE
============================================================
python -m execution_engine.cli prices BTC-USDT-SWAP ETH-USDT-SWAP
python -m execution_engine.cli positions
python -m execution_engine.cli order BTC/USDT:USDT buy 1 --type limit --price 60000 --pos-side long
python -m execution_engine.cli close BTC long
python -m execution_engine.cli close-all --yes
python -m execution_engine.cli --dry-run close-all --yes

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from core.exceptions import TradingException
from core.logging_config import setup_logging

from .adapters.base import ExchangeClient
from .adapters.factory import create_client
from .config import ExecutionEngineConfig
from .errors import UpstreamAuthError
from .execution_service import ExecutionService
from .types import PositionSide, TradingIntent


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perp-exec",
        description="Order execution and close-all for OKX USDT perpetual swaps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  OKX_API_KEY, OKX_SECRET, OKX_PASSWORD   credentials (.env is read)
  OKX_SANDBOX=true                        demo trading

Examples:
  %(prog)s prices BTC-USDT-SWAP
  %(prog)s order BTC/USDT:USDT sell 2 --pos-side short
  %(prog)s close ETH short
  %(prog)s close-all --yes
        """,
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument(
        "--log-format",
        default="text",
        choices=["text", "json"],
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory exchange client",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    prices = sub.add_parser("prices", help="Last prices (cached)")
    prices.add_argument("inst_ids", nargs="*", help="Instrument ids (default: watched list)")

    sub.add_parser("positions", help="Open positions (cached)")

    order = sub.add_parser("order", help="Place one order")
    order.add_argument("symbol")
    order.add_argument("side", choices=["buy", "sell"])
    order.add_argument("quantity", help="Size in contracts")
    order.add_argument("--type", dest="order_type", default="market", choices=["market", "limit"])
    order.add_argument("--price")
    order.add_argument("--pos-side", dest="position_side", choices=["long", "short"])
    order.add_argument("--margin", dest="margin_mode", default="cross", choices=["cross", "isolated"])
    order.add_argument("--reduce-only", action="store_true")

    close = sub.add_parser("close", help="Close one open position in full")
    close.add_argument("coin", help="Base coin, e.g. BTC")
    close.add_argument("side", choices=["long", "short"], help="Leg to close")

    close_all = sub.add_parser("close-all", help="Close every open position")
    close_all.add_argument("--yes", action="store_true", help="Confirm closing everything")

    return parser


# ============================================================
# COMMANDS
# ============================================================

def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run(
    args: argparse.Namespace,
    client: Optional[ExchangeClient] = None,
    config: Optional[ExecutionEngineConfig] = None,
) -> int:
    """Execute one parsed command. Returns the exit code."""
    if args.command == "close-all" and not args.yes:
        print("Refusing to close all positions without --yes", file=sys.stderr)
        return EXIT_USAGE

    config = config or ExecutionEngineConfig.from_env()
    if args.dry_run:
        config.dry_run = True
    client = client or create_client(config)

    async with ExecutionService(client, config) as service:
        if args.command == "prices":
            prices = await service.get_prices(args.inst_ids or None)
            _emit({k: str(v) for k, v in prices.items()})
            return EXIT_OK

        if args.command == "positions":
            positions = await service.get_positions()
            _emit([p.to_dict() for p in positions])
            return EXIT_OK

        if args.command == "order":
            intent = TradingIntent.from_dict({
                "symbol": args.symbol,
                "side": args.side,
                "order_type": args.order_type,
                "quantity": args.quantity,
                "price": args.price,
                "position_side": args.position_side,
                "margin_mode": args.margin_mode,
                "reduce_only": args.reduce_only,
            })
            result = await service.place_order(intent)
            _emit(result.to_dict())
            return EXIT_OK

        if args.command == "close":
            outcome = await service.close_position(args.coin, PositionSide(args.side))
            _emit(outcome.to_dict())
            return EXIT_OK if outcome.success else EXIT_ERROR

        report = await service.unwind_all()
        _emit(report.to_dict())
        return EXIT_ERROR if report.is_failure else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, log_format=args.log_format)

    try:
        return asyncio.run(run(args))
    except UpstreamAuthError as e:
        _emit({"error": e.to_dict()})
        logger.error(e.guidance)
        return EXIT_ERROR
    except TradingException as e:
        _emit({"error": e.to_dict()})
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
