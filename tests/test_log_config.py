import sys
from io import StringIO

import pytest
from loguru import logger

from fedifabric.log_config import configure_logging, redact_url


def _last_handler():
    handler_id = list(logger._core.handlers.keys())[-1]
    return logger._core.handlers[handler_id]


@pytest.mark.parametrize("level", ["INFO", "debug", "WARNING"])
def test_configure_logging_sets_level(level):
    """The installed handler uses the requested level, case-insensitively."""
    configure_logging(level=level)
    assert _last_handler()._levelno == logger.level(level.upper()).no


def test_configure_logging_replaces_existing_handlers():
    """Pre-existing handlers are removed."""
    logger.remove()
    logger.add(lambda _: None, level="ERROR")
    assert len(logger._core.handlers) == 1

    configure_logging(level="INFO")

    assert len(logger._core.handlers) == 1
    assert _last_handler()._levelno == logger.level("INFO").no


def test_configure_logging_writes_to_custom_sink():
    sink = StringIO()
    configure_logging(level="DEBUG", sink=sink)

    logger.debug("streaming frame routed")

    output = sink.getvalue()
    assert "streaming frame routed" in output
    assert "DEBUG" in output


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        (
            "wss://example.test/api/v1/streaming?access_token=secret",
            "wss://example.test/api/v1/streaming?access_token=***",
        ),
        (
            "wss://example.test/api/v1/streaming?access_token=secret&stream=user",
            "wss://example.test/api/v1/streaming?access_token=***&stream=user",
        ),
        (
            "wss://example.test/api/v1/streaming",
            "wss://example.test/api/v1/streaming",
        ),
    ],
)
def test_redact_url(url, expected):
    """Access tokens never reach log lines."""
    assert redact_url(url) == expected


@pytest.fixture(autouse=True)
def reset_logger_after_test():
    """Restores a basic default handler after each test in this module."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="INFO")
