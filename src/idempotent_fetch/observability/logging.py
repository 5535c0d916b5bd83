"""Structured logging configuration.

Events are emitted through structlog and routed into the standard library
``logging`` tree, so they share one level and one handler with the records
produced by boto3, botocore and httpx. The HTTP adapter binds the request
path, and the handler binds the idempotency key, into structlog's context
variables; every event emitted while serving a request carries them.

Examples:
    Configure logging::

        from idempotent_fetch.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Use the logger::

        from idempotent_fetch.observability.logging import get_logger

        logger = get_logger(__name__)
        logger.info("idempotency.cache_hit", key="fetch-location#5d41...")

    Output (JSON)::

        {
            "event": "idempotency.cache_hit",
            "key": "fetch-location#5d41...",
            "idempotency_key": "fetch-location#5d41...",
            "path": "/helloidem",
            "logger": "idempotent_fetch.core.coordinator",
            "level": "info",
            "timestamp": "2024-01-01T00:00:00.000000Z"
        }
"""

import logging
import sys
from typing import Any

import structlog

# Client libraries that log every request at DEBUG/INFO
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    This should be called once at application startup. Below DEBUG, the
    AWS and HTTP client libraries are held at WARNING.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format
    """
    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
        force=True,
    )
    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger named after the calling module.

    Args:
        name: Logger name (typically __name__ from the calling module)
    """
    return structlog.get_logger(name)
