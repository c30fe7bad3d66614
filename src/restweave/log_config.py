# restweave/log_config.py
"""Logging configuration for the restweave library using Loguru.

All modules log through the ``logger`` re-exported here. Applications that want
restweave diagnostics call ``configure_logging`` once at startup; the separate,
caller-facing request/response trace lives in ``restweave.debug_logging``.
"""

import sys

from loguru import logger

__all__ = ["configure_logging", "logger"]

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def configure_logging(level: str = "INFO", sink=sys.stderr) -> int:
    """
    Configures Loguru logger.

    Removes default handlers and adds a new one with the specified level and sink.

    Args:
        level: The minimum logging level (e.g., "DEBUG", "INFO", "WARNING").
        sink: The output sink (e.g., sys.stderr, "file.log").

    Returns:
        int: The id of the handler that was added.
    """
    logger.remove()
    handler_id = logger.add(
        sink,
        level=level.upper(),
        format=LOG_FORMAT,
        colorize=sink is sys.stderr,  # Only colorize if writing to stderr
        backtrace=True,
        diagnose=False,
    )
    logger.debug(f"Loguru logger configured with level={level.upper()}")
    return handler_id
