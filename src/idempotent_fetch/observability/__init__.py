"""Observability utilities for the idempotent fetch service.

This package provides:
- Prometheus metrics for outcomes, execution time and active claims
- Structured logging with contextual information
"""

from idempotent_fetch.observability.logging import configure_logging, get_logger
from idempotent_fetch.observability.metrics import (
    record_cleanup,
    record_execution_time,
    record_outcome,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "record_outcome",
    "record_execution_time",
    "record_cleanup",
]
