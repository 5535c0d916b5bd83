"""In-memory storage adapter.

This module provides a single-process implementation of the StorageAdapter
interface. Every read-modify-write runs under one ``threading.Lock`` and
contains no ``await``, so it is atomic both for concurrent asyncio tasks and
for handlers running in worker threads.

The MemoryStorageAdapter is suitable for:
    - Single-process deployments
    - Development and testing

Use DynamoDBStorageAdapter when several processes or machines serve the
same keys.

Examples:
    Basic usage::

        from idempotent_fetch.storage.memory import MemoryStorageAdapter

        adapter = MemoryStorageAdapter()
        claim = await adapter.try_insert_in_progress(
            key="fetch-location#abc",
            in_progress_expiry=now + timedelta(seconds=60),
            record_expiry=now + timedelta(hours=1),
        )
        if claim.success:
            await adapter.complete("fetch-location#abc", claim.claim_token, body, expiry)
"""

import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from idempotent_fetch.core.state_machine import (
    LifecycleEvent,
    can_transition,
    expiry_event,
    is_claimable,
    next_status,
)
from idempotent_fetch.exceptions import ClaimLostError, InvalidTransitionError
from idempotent_fetch.models import ClaimResult, IdempotencyRecord, RecordStatus
from idempotent_fetch.observability.logging import get_logger
from idempotent_fetch.storage.base import StorageAdapter

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryStorageAdapter(StorageAdapter):
    """In-memory storage adapter guarded by a single lock.

    Attributes:
        _store: Dictionary mapping keys to IdempotencyRecord objects.
        _lock: Lock serializing every access to _store.
        _clock: Callable returning the current UTC time.
        native_ttl: Always False; expired records stay in memory until swept.
    """

    native_ttl = False

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize a new in-memory storage adapter.

        Args:
            clock: Source of the current time; tests inject a fake clock.
        """
        self._store: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock

    async def try_insert_in_progress(
        self,
        key: str,
        in_progress_expiry: datetime,
        record_expiry: datetime,
        payload_hash: str | None = None,
    ) -> ClaimResult:
        """Atomically insert an IN_PROGRESS record if no live record exists.

        An existing record whose expiry has elapsed is overwritten.
        """
        with self._lock:
            now = self._clock()
            existing = self._store.get(key)
            if not is_claimable(existing, now):
                return ClaimResult(success=False)

            status = next_status(RecordStatus.ABSENT, LifecycleEvent.CLAIM)
            claim_token = str(uuid.uuid4())
            self._store[key] = IdempotencyRecord(
                key=key,
                status=status,
                in_progress_expiry=in_progress_expiry,
                result_expiry=record_expiry,
                claim_token=claim_token,
                payload_hash=payload_hash,
                created_at=now,
            )

        if existing is not None:
            logger.info(
                "store.reclaimed",
                key=key,
                previous_status=existing.status.value,
                lifecycle_event=expiry_event(existing).value,
            )
        return ClaimResult(success=True, claim_token=claim_token)

    async def get(self, key: str) -> IdempotencyRecord | None:
        """Retrieve the live record for a key, or None if missing or expired."""
        with self._lock:
            record = self._store.get(key)
            if record is None or record.is_expired(self._clock()):
                return None
            return record.model_copy()

    async def complete(
        self,
        key: str,
        claim_token: str,
        result: str,
        result_expiry: datetime,
    ) -> None:
        """Transition the caller's live claim to COMPLETED.

        Ownership is the claim token: a claim whose in-progress expiry
        elapsed can still complete as long as nobody reclaimed the key.

        Raises:
            ClaimLostError: If the record is missing, already completed or
                owned by a different claim.
        """
        with self._lock:
            record = self._store.get(key)
            if record is None or record.claim_token != claim_token:
                raise ClaimLostError(
                    f"Claim on key {key} is no longer held by this caller",
                    key=key,
                    claim_token=claim_token,
                )
            try:
                status = next_status(record.status, LifecycleEvent.COMPLETE)
            except InvalidTransitionError as e:
                raise ClaimLostError(
                    f"Claim on key {key} cannot be completed from status {record.status.value}",
                    key=key,
                    claim_token=claim_token,
                ) from e

            self._store[key] = record.model_copy(
                update={
                    "status": status,
                    "result": result,
                    "result_expiry": result_expiry,
                    "in_progress_expiry": None,
                }
            )

    async def release(self, key: str, claim_token: str) -> bool:
        """Delete the caller's IN_PROGRESS record.

        Returns:
            True if deleted, False if the record is gone or owned by another
            claim.
        """
        with self._lock:
            record = self._store.get(key)
            if record is None or record.claim_token != claim_token:
                return False
            if not can_transition(record.status, LifecycleEvent.RELEASE):
                return False
            del self._store[key]
            return True

    async def cleanup_expired(self) -> int:
        """Remove all records whose expiry has elapsed.

        Returns:
            The number of records removed.
        """
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, record in self._store.items() if record.is_expired(now)]
            for key in expired_keys:
                del self._store[key]
        return len(expired_keys)

    def record_count(self) -> int:
        """Number of physically stored records, live or expired."""
        with self._lock:
            return len(self._store)
