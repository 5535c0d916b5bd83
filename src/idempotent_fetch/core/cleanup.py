"""Background sweeper for expired idempotency records.

Expiry is logical: every store operation already treats an expired record
as absent, so sweeping only frees memory. Stores that delete expired
records themselves (``native_ttl``, e.g. DynamoDB's TTL on ``expiration``)
get no sweeper at all.

Examples:
    Start and stop the sweeper from an application lifespan::

        task = start_cleanup_task(storage, interval_seconds=300)
        ...
        if task is not None:
            await stop_cleanup_task(task)
"""

import asyncio

from idempotent_fetch.observability.logging import get_logger
from idempotent_fetch.observability.metrics import record_cleanup
from idempotent_fetch.storage.base import StorageAdapter

logger = get_logger(__name__)


async def sweep_once(storage: StorageAdapter) -> int:
    """Remove expired records once and record the sweep.

    Returns:
        The number of records removed.
    """
    count = await storage.cleanup_expired()
    record_cleanup(count)
    if count:
        logger.info("cleanup.swept", records_removed=count)
    return count


async def cleanup_loop(
    storage: StorageAdapter,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """Sweep every ``interval_seconds`` until ``stop_event`` is set.

    The first sweep runs one interval after start. A failed sweep is logged
    and the loop carries on; request handling never depends on it.
    """
    logger.info("cleanup.started", interval_seconds=interval_seconds)
    while True:
        try:
            async with asyncio.timeout(interval_seconds):
                await stop_event.wait()
            break
        except TimeoutError:
            pass

        try:
            await sweep_once(storage)
        except Exception as e:
            logger.error("cleanup.failed", error=str(e), error_type=type(e).__name__)
    logger.info("cleanup.stopped")


def start_cleanup_task(
    storage: StorageAdapter,
    interval_seconds: float,
) -> asyncio.Task[None] | None:
    """Start the sweeper for ``storage`` as a background task.

    Returns:
        The running task, or None if the store expires records natively.
    """
    if storage.native_ttl:
        logger.info("cleanup.skipped", reason="native_ttl")
        return None

    stop_event = asyncio.Event()
    task = asyncio.create_task(cleanup_loop(storage, interval_seconds, stop_event))
    task._stop_event = stop_event  # type: ignore[attr-defined]
    return task


async def stop_cleanup_task(task: asyncio.Task[None]) -> None:
    """Stop the sweeper, cancelling it if a sweep does not finish in time."""
    task._stop_event.set()  # type: ignore[attr-defined]
    try:
        await asyncio.wait_for(task, timeout=5.0)
    except TimeoutError:
        logger.warning("cleanup.stop_timeout")
