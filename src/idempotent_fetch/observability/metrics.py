"""Prometheus metrics for the idempotent fetch service.

Metrics include:

- Outcome counter by result (executed, replay, conflict, failure, timeout)
  and status
- Execution time histogram for fresh executions
- Active claims gauge
- Cleanup operation tracking

Examples:
    Recording a replayed request::

        from idempotent_fetch.observability.metrics import record_outcome

        record_outcome(result="replay", status_code=200)
"""

from prometheus_client import Counter, Gauge, Histogram

# Labels: result (executed, replay, conflict, failure, timeout), status_code
outcomes_total = Counter(
    "idempotency_outcomes_total",
    "Total number of requests by idempotency outcome",
    ["result", "status_code"],
)

# Fresh executions only, never replays
execution_time_seconds = Histogram(
    "idempotency_execution_time_seconds",
    "Business logic execution time in seconds (fresh executions only)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

active_claims = Gauge(
    "idempotency_active_claims",
    "Number of claims currently held by this process",
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup operations performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by cleanup",
)


def record_outcome(result: str, status_code: int) -> None:
    """Record a handled request.

    Args:
        result: executed, replay, conflict, failure or timeout
        status_code: HTTP status code of the response

    Examples:
        >>> record_outcome("replay", 200)
        >>> record_outcome("conflict", 409)
    """
    outcomes_total.labels(result=result, status_code=str(status_code)).inc()


def record_execution_time(exec_time_ms: int) -> None:
    """Record business logic execution time.

    Only called for fresh executions, not replays.

    Args:
        exec_time_ms: Execution time in milliseconds
    """
    execution_time_seconds.observe(exec_time_ms / 1000.0)


def increment_active_claims() -> None:
    """Called when this process acquires a claim."""
    active_claims.inc()


def decrement_active_claims() -> None:
    """Called when a held claim is completed or released."""
    active_claims.dec()


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation.

    Args:
        records_removed: Number of expired records removed
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
