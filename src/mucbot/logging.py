"""Structured logging helpers."""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(*, debug: bool = False) -> None:
    """Configure structlog for console output on stderr.

    Library code only calls `get_logger`; applications call this once.
    """
    level = logging.DEBUG if debug else logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)
