"""
Core Module Package.

Shared infrastructure the other packages depend on.

Components:
- clock: Injectable time source
- exceptions: Base exception hierarchy
- logging_config: Root logger setup
"""

from .clock import ClockProtocol, MockClock, SystemClock
from .exceptions import (
    ConfigurationError,
    ErrorClassification,
    MissingConfigError,
    Severity,
    TradingException,
)
from .logging_config import setup_logging

__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "ConfigurationError",
    "ErrorClassification",
    "MissingConfigError",
    "Severity",
    "TradingException",
    "setup_logging",
]
