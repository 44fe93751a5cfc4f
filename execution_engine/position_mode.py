"""
Execution Engine - Position Mode Resolver.

============================================================
PURPOSE
============================================================
Reads the account's position mode before a trading action.

- long_short_mode  -> HEDGE (separate long and short legs)
- anything else    -> NET   (one signed position)

The mode is read fresh on every call and never cached: it can
be switched between sessions and a stale value would tag
orders with the wrong leg. A failed read propagates; callers
must not fall back to a default mode.

============================================================
"""

import logging

from .adapters.base import ExchangeClient
from .types import PositionMode


logger = logging.getLogger(__name__)


class PositionModeResolver:
    """Single-read resolver for the account position mode."""

    def __init__(self, client: ExchangeClient):
        self._client = client

    async def resolve(self) -> PositionMode:
        """
        Returns:
            PositionMode.HEDGE or PositionMode.NET

        Raises:
            UpstreamError: the account config read failed
        """
        account = await self._client.fetch_account_config()
        mode = PositionMode.from_account_value(account.position_mode)
        logger.debug(f"Account posMode={account.position_mode!r} -> {mode.value}")
        return mode
