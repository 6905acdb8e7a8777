"""
Structured logging configuration using structlog.

Every event carries the service name and the QuickBooks environment, and
OAuth credentials are masked before rendering so that token exchanges and
refreshes can be logged with their full context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from ledgerbridge import __version__
from ledgerbridge.config import get_settings

SERVICE_NAME = "ledgerbridge"

# Event keys whose values never reach the log output.
SECRET_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "client_secret",
        "authorization",
        "api_key",
        "code",
    }
)

MASK = "***"

# Chatty third-party loggers; httpx logs every request URL at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "duckdb")


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential values with a fixed mask."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def service_context(intuit_env: str) -> Processor:
    """Build a processor stamping service, version and QuickBooks environment."""

    def add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("version", __version__)
        event_dict.setdefault("intuit_env", intuit_env)
        return event_dict

    return add_service


def configure_logging() -> None:
    """
    Configure structured logging for the application.
    Uses JSON format in production, console format in development.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if settings.log_format == "json" and not settings.dev_mode:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            service_context(settings.intuit_env),
            mask_secrets,
            add_severity,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)
