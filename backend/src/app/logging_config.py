"""Logging configuration."""

import logging
import sys

import structlog

from app.settings import settings

# Libraries that log through the standard library at INFO on every call
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine.Engine")


def configure_logging() -> None:
    """Configure structured logging.

    Events are logged as a name plus key/value context, e.g.
    ``logger.info("referral_created", referral_id=1, level=2)``. Request
    handlers bind ``request_id`` through contextvars so it is merged into
    every event of the request.
    """
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]

    if settings.log_format == "json":
        processors = shared + [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    if settings.env != "development":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
