"""Structured logging setup."""

import logging

import structlog

from storefront.infrastructure.config import settings


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog processors and the log level.

    Args:
        level: Log level name, defaults to settings.log_level.
        fmt: 'json' for machine-readable output, anything else for console.
    """
    level_name = (level or settings.log_level).upper()
    renderer = (
        structlog.processors.JSONRenderer()
        if (fmt or settings.log_format) == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
