"""Structured logging configuration.

Log records always go to stderr so the CLI's stdout carries only command
output. JSON rendering in production, console rendering otherwise.
httpx and httpcore log every request at INFO; they are held at WARNING
unless LOG_LEVEL is DEBUG.
"""

from __future__ import annotations

import logging
import sys

import structlog

from src.salesboost.config import Environment, Settings, get_settings

_HTTP_LOGGERS = ("httpx", "httpcore")


def configure_structlog(settings: Settings | None = None) -> None:
    """Configure structlog and the stdlib backend for this process."""
    settings = settings or get_settings()
    level = settings.LOG_LEVEL.upper()

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stderr)
    http_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
