"""Idempotency coordinator.

This module orchestrates claim, execute and commit/release against a
storage adapter so that the wrapped business logic runs at most once per
key:

    1. Conditionally insert an IN_PROGRESS record (the claim).
    2. Claim failed, live COMPLETED record  -> Success from the cache.
    3. Claim failed, live IN_PROGRESS record -> Conflict, nothing written.
    4. Claim succeeded -> run the business logic.
    5. Business logic returned -> store the serialized result, Success.
    6. Business logic raised   -> delete the record, Failure.

Steps 1-3 hinge on a single conditional write in the store. The coordinator
holds no in-memory lock and never retries; contention on a key is reported
as Conflict and left to the caller.

Examples:
    Wrapping a call::

        coordinator = Coordinator(storage, config)
        coordinator.register_deadline(datetime.now(UTC) + timedelta(seconds=30))

        outcome = await coordinator.execute(key, lambda: service.run(body))
        if isinstance(outcome, Success):
            ...
"""

import json
import time
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from datetime import UTC, datetime, timedelta
from typing import Any

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.core.outcome import Conflict, Failure, Outcome, Success
from idempotent_fetch.core.state_machine import effective_status
from idempotent_fetch.exceptions import ClaimLostError, PayloadMismatchError
from idempotent_fetch.models import RecordStatus
from idempotent_fetch.observability.logging import get_logger
from idempotent_fetch.observability.metrics import (
    decrement_active_claims,
    increment_active_claims,
    record_execution_time,
)
from idempotent_fetch.storage.base import StorageAdapter

logger = get_logger(__name__)

# Per-task: concurrent invocations sharing one coordinator keep separate deadlines
_invocation_deadline: ContextVar[datetime | None] = ContextVar(
    "idempotency_invocation_deadline", default=None
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Coordinator:
    """Runs business logic at most once per idempotency key.

    Attributes:
        store: Storage adapter providing the conditional writes.
        config: Configuration with the in-progress and result TTLs.
    """

    def __init__(
        self,
        store: StorageAdapter,
        config: IdempotencyConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.config = config
        self._clock = clock

    def register_deadline(self, deadline: datetime | None) -> None:
        """Register the current invocation's deadline.

        Claims taken afterwards in the same task (or tasks spawned from it)
        become reclaimable no later than the deadline, so an invocation
        killed by its runtime cannot block the key for the full
        in-progress TTL.

        Args:
            deadline: Absolute UTC deadline, or None to clear it.
        """
        _invocation_deadline.set(deadline)

    def in_progress_expiry(self, now: datetime) -> datetime:
        """Compute when a claim taken at ``now`` becomes reclaimable."""
        expiry = now + timedelta(seconds=self.config.in_progress_ttl_seconds)
        deadline = _invocation_deadline.get()
        if deadline is not None and deadline < expiry:
            return deadline
        return expiry

    async def execute(
        self,
        key: str,
        fn: Callable[[], Awaitable[Any]],
        payload_hash: str | None = None,
    ) -> Outcome:
        """Run ``fn`` under the idempotency protocol for ``key``.

        Args:
            key: Derived idempotency key.
            fn: Zero-argument coroutine function returning a JSON-serializable
                value.
            payload_hash: Optional hash compared against a cached record's
                payload hash on a cache hit.

        Returns:
            Success, Conflict or Failure.

        Raises:
            StoreUnavailableError: If the store cannot be reached. The
                business logic is not run without a claim.
        """
        now = self._clock()
        claim = await self.store.try_insert_in_progress(
            key,
            in_progress_expiry=self.in_progress_expiry(now),
            record_expiry=now + timedelta(seconds=self.config.result_ttl_seconds),
            payload_hash=payload_hash,
        )
        if not claim.success:
            return await self._existing_outcome(key, payload_hash)

        claim_token = claim.claim_token
        if claim_token is None:
            raise RuntimeError("Claim succeeded but no token returned")

        logger.info("idempotency.claimed", key=key)
        increment_active_claims()
        try:
            return await self._run_claimed(key, claim_token, fn)
        finally:
            decrement_active_claims()

    async def _run_claimed(
        self,
        key: str,
        claim_token: str,
        fn: Callable[[], Awaitable[Any]],
    ) -> Outcome:
        start_time = time.monotonic()
        try:
            result = await fn()
            body = json.dumps(result)
        except Exception as e:
            await self._release(key, claim_token, e)
            return Failure(e)

        execution_time_ms = int((time.monotonic() - start_time) * 1000)
        result_expiry = self._clock() + timedelta(seconds=self.config.result_ttl_seconds)
        try:
            await self.store.complete(key, claim_token, body, result_expiry)
        except ClaimLostError as e:
            logger.warning(
                "idempotency.claim_lost",
                key=key,
                execution_time_ms=execution_time_ms,
            )
            return Failure(e)

        record_execution_time(execution_time_ms)
        logger.info(
            "idempotency.completed",
            key=key,
            execution_time_ms=execution_time_ms,
        )
        return Success(
            result=json.loads(body),
            body=body,
            replayed=False,
            execution_time_ms=execution_time_ms,
        )

    async def _release(self, key: str, claim_token: str, error: Exception) -> None:
        released = await self.store.release(key, claim_token)
        logger.info(
            "idempotency.released",
            key=key,
            released=released,
            error_type=type(error).__name__,
        )

    async def _existing_outcome(self, key: str, payload_hash: str | None) -> Outcome:
        record = await self.store.get(key)
        status = effective_status(record, self._clock())

        if record is not None and status == RecordStatus.COMPLETED:
            if (
                payload_hash is not None
                and record.payload_hash is not None
                and record.payload_hash != payload_hash
            ):
                logger.warning("idempotency.payload_mismatch", key=key)
                return Failure(
                    PayloadMismatchError(
                        f"Payload for key {key} differs from the cached request",
                        key=key,
                    )
                )
            logger.info("idempotency.cache_hit", key=key)
            return Success(
                result=record.result_payload(),
                body=record.result or "",
                replayed=True,
            )

        # ABSENT here means the holder released or expired between our claim and read
        logger.info("idempotency.conflict", key=key, status=status.value)
        return Conflict(key)
