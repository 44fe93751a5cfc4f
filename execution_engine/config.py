"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the execution engine.

Credentials come from the environment (a .env file is loaded
first when present). Everything else has a code default and
can be overridden by constructing the dataclasses directly.

CRITICAL CONSTRAINTS:
- No automatic retries
- Sandbox and live keys are never interchangeable

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError, MissingConfigError
from response_cache.config import CacheConfig


TRUE_VALUES = ("1", "true", "yes", "on")

DEFAULT_WATCHED_INSTRUMENTS = [
    "BNB-USDT-SWAP",
    "BTC-USDT-SWAP",
    "ETH-USDT-SWAP",
    "SOL-USDT-SWAP",
    "XRP-USDT-SWAP",
    "DOGE-USDT-SWAP",
]


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def _env_first(*names: str) -> str:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return ""


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass
class ExchangeConfig:
    """OKX credentials and transport settings."""

    api_key: str = ""
    api_secret: str = ""
    passphrase: str = ""

    sandbox: bool = False
    """Demo trading. Sent as the x-simulated-trading header."""

    use_aws: bool = False
    """Use the aws.okx.com host."""

    timeout_seconds: float = 10.0
    """Total timeout per HTTP request."""

    def __repr__(self) -> str:
        return (
            f"ExchangeConfig(sandbox={self.sandbox}, use_aws={self.use_aws}, "
            f"timeout_seconds={self.timeout_seconds}, has_credentials={self.has_credentials})"
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret and self.passphrase)

    def require_credentials(self) -> None:
        """
        Raises:
            MissingConfigError: naming the first missing variable
        """
        if not self.api_key:
            raise MissingConfigError("OKX_API_KEY")
        if not self.api_secret:
            raise MissingConfigError("OKX_SECRET")
        if not self.passphrase:
            raise MissingConfigError("OKX_PASSWORD")

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "ExchangeConfig":
        """
        Build from environment variables.

        OKX_API_KEY, OKX_SECRET (or OKX_API_SECRET),
        OKX_PASSWORD (or OKX_PASSPHRASE), OKX_SANDBOX, OKX_USE_AWS,
        OKX_TIMEOUT_SECONDS.
        """
        if dotenv:
            load_dotenv()

        raw_timeout = os.getenv("OKX_TIMEOUT_SECONDS", "10")
        try:
            timeout = float(raw_timeout)
        except ValueError:
            raise ConfigurationError(
                "OKX_TIMEOUT_SECONDS must be a number",
                config_key="OKX_TIMEOUT_SECONDS",
                actual_value=raw_timeout,
            )
        if timeout <= 0:
            raise ConfigurationError(
                "OKX_TIMEOUT_SECONDS must be positive",
                config_key="OKX_TIMEOUT_SECONDS",
                actual_value=raw_timeout,
            )

        return cls(
            api_key=_env_first("OKX_API_KEY"),
            api_secret=_env_first("OKX_SECRET", "OKX_API_SECRET"),
            passphrase=_env_first("OKX_PASSWORD", "OKX_PASSPHRASE"),
            sandbox=_env_flag("OKX_SANDBOX"),
            use_aws=_env_flag("OKX_USE_AWS"),
            timeout_seconds=timeout,
        )


# ============================================================
# UNWIND CONFIGURATION
# ============================================================

@dataclass
class UnwindConfig:
    """Close-all behaviour."""

    order_timeout_seconds: Optional[float] = None
    """
    Per-close deadline on top of the transport timeout.
    None leaves only the transport timeout in force.
    """

    def __post_init__(self):
        if self.order_timeout_seconds is not None and self.order_timeout_seconds <= 0:
            raise ConfigurationError(
                "order_timeout_seconds must be positive",
                config_key="order_timeout_seconds",
                actual_value=self.order_timeout_seconds,
            )


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class ExecutionEngineConfig:
    """Master configuration for the execution engine."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    unwind: UnwindConfig = field(default_factory=UnwindConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    watched_instruments: List[str] = field(
        default_factory=lambda: list(DEFAULT_WATCHED_INSTRUMENTS)
    )
    """Instruments priced when a caller does not name any."""

    dry_run: bool = False
    """Use the in-memory client instead of OKX."""

    @classmethod
    def from_env(cls) -> "ExecutionEngineConfig":
        return cls(
            exchange=ExchangeConfig.from_env(),
            dry_run=_env_flag("EXECUTION_DRY_RUN"),
        )

    @classmethod
    def for_testing(cls) -> "ExecutionEngineConfig":
        """Deterministic configuration for tests."""
        return cls(
            exchange=ExchangeConfig(sandbox=True, timeout_seconds=2.0),
            unwind=UnwindConfig(order_timeout_seconds=None),
            cache=CacheConfig.for_testing(),
            dry_run=True,
        )
