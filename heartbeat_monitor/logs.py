from __future__ import annotations

import logging

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Console logging for the service and the CLI."""
    lvl = logging.getLevelName(str(level or "INFO").upper())
    if not isinstance(lvl, int):
        lvl = logging.INFO
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
