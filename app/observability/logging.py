"""
Structured Logging with Structlog.

Provides JSON-formatted logs with request context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from app.config import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def setup_logging() -> None:
    """
    Configure structured logging with structlog.

    Log lines look like:
    {
        "event": "ipn_payment_granted",
        "level": "info",
        "timestamp": "2026-01-08T12:00:00.123456Z",
        "logger": "app.services.entitlements",
        "service": "studio-access-api",
        "version": "0.1.0",
        "order_id": "A1B2C3",
        ...additional context
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("asset_deleted", identifier="classes/intro", kind="video")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Context manager binding structured logging context for a block.

    Usage:
        with log_context(request_id="req-123", order_id="A1B2"):
            logger.info("ipn_received")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs

    def __enter__(self) -> None:
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.unbind_contextvars(*self.context.keys())
