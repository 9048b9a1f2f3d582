# fedifabric/log_config.py
"""Logging configuration for the fedifabric library using Loguru.

This module provides a centralized function to configure the Loguru logger
with a standardized format, level, and sink, plus a helper that keeps access
tokens out of log lines.
"""

import re
import sys

from loguru import logger

_TOKEN_QUERY_PATTERN = re.compile(r"(access_token=)[^&#]+")


def configure_logging(level: str = "INFO", sink=sys.stderr):
    """
    Configures Loguru logger.

    Removes default handlers and adds a new one with the specified level and sink.

    Args:
        level: The minimum logging level (e.g., "DEBUG", "INFO", "WARNING").
        sink: The output sink (e.g., sys.stderr, "file.log").
    """
    logger.remove()
    logger.add(
        sink,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=sink is sys.stderr,
        backtrace=True,
        diagnose=False,
    )
    logger.info(
        f"Loguru logger configured with level={level.upper()} writing to {sink}"
    )


def redact_url(url: str) -> str:
    """Masks the value of an `access_token` query parameter in a URL."""
    return _TOKEN_QUERY_PATTERN.sub(r"\1***", url)
