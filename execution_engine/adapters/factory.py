"""
Exchange Client - Factory.

Picks the client implementation for a configuration: the OKX
client for live or demo trading, the in-memory client for dry
runs.
"""

import logging
from typing import Optional

from ..config import ExecutionEngineConfig
from .base import ExchangeClient
from .mock import MockConfig, MockExchangeClient
from .okx import OKXClient


logger = logging.getLogger(__name__)


def create_client(
    config: ExecutionEngineConfig,
    mock_config: Optional[MockConfig] = None,
) -> ExchangeClient:
    """
    Create an unconnected exchange client.

    Args:
        config: Engine configuration; dry_run selects the mock
        mock_config: Initial mock state for dry runs
    """
    if config.dry_run:
        logger.info("Dry run: using in-memory exchange client")
        return MockExchangeClient(mock_config)
    return OKXClient(config.exchange)


async def create_connected_client(
    config: ExecutionEngineConfig,
    mock_config: Optional[MockConfig] = None,
) -> ExchangeClient:
    client = create_client(config, mock_config)
    await client.connect()
    return client
