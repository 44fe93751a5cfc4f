"""
Core Module - Logging Setup.

============================================================
RESPONSIBILITY
============================================================
Installs the single stdout handler used by the CLI and by
services embedding the execution engine.

Modules never configure logging themselves; they only call
logging.getLogger(__name__).

============================================================
"""

import json
import logging
import sys
from typing import Optional


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | {correlation} | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, correlation_id: Optional[str] = None):
        super().__init__()
        self.correlation_id = correlation_id or ""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": self.correlation_id,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up root logging.

    Args:
        level: Log level name
        log_format: Output format (json or text)
        correlation_id: Correlation ID stamped on every line

    Returns:
        The execution_engine package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(correlation_id)
    else:
        formatter = logging.Formatter(
            TEXT_FORMAT.format(correlation=correlation_id or "-")
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("execution_engine")
