"""Storage adapter protocol for idempotency records.

This module defines the narrow interface the coordinator consumes. Any
key-value store that offers a conditional (compare-and-insert) write and
per-record expiry can back it.

Examples:
    Using a storage adapter::

        claim = await storage.try_insert_in_progress(
            key, in_progress_expiry=soon, record_expiry=later
        )
        if not claim.success:
            record = await storage.get(key)
            ...  # cache hit or conflict
        try:
            result = await run()
        except Exception:
            await storage.release(key, claim.claim_token)
            raise
        await storage.complete(key, claim.claim_token, serialized, result_expiry)

Atomicity Requirements:
    All StorageAdapter implementations MUST guarantee:

    1. **Atomic claim**: try_insert_in_progress() checks for a live record
       and inserts in one operation. A read followed by a write is not
       enough; it lets two callers claim the same key.

    2. **Expiry as absence**: a record whose in-progress expiry (for
       IN_PROGRESS) or result expiry has elapsed counts as absent. It is
       overwritten by a claim and not returned by get().

    3. **Claim ownership**: complete() and release() only act on the record
       created by the caller's own claim, identified by its claim token.

    4. **Fail loudly**: backend failures surface as StoreUnavailableError,
       never as a successful claim.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from idempotent_fetch.models import ClaimResult, IdempotencyRecord


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol defining the interface for idempotency persistence stores.

    Single-key operations must be linearizable; nothing is assumed across
    keys. All methods are async and must be safe to call concurrently.

    Attributes:
        native_ttl: True if the backend deletes expired records on its own;
            such stores are never swept by the cleanup task.

    Error Handling:
        Methods raise StoreUnavailableError for backend failures and
        ClaimLostError when complete() is called without owning the claim.
        Backend-specific exceptions must not leak.
    """

    native_ttl: bool

    async def try_insert_in_progress(
        self,
        key: str,
        in_progress_expiry: datetime,
        record_expiry: datetime,
        payload_hash: str | None = None,
    ) -> ClaimResult:
        """Atomically insert an IN_PROGRESS record if no live record exists.

        Args:
            key: The idempotency key.
            in_progress_expiry: When the claim becomes reclaimable.
            record_expiry: Upper bound for the record's lifetime.
            payload_hash: Optional payload hash stored for validation.

        Returns:
            ClaimResult with success=True and a fresh claim token, or
            success=False if a live record already exists.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        ...

    async def get(self, key: str) -> IdempotencyRecord | None:
        """Retrieve the live record for a key.

        Returns:
            The record, or None if it is missing or expired.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        ...

    async def complete(
        self,
        key: str,
        claim_token: str,
        result: str,
        result_expiry: datetime,
    ) -> None:
        """Transition the caller's IN_PROGRESS record to COMPLETED.

        Args:
            key: The idempotency key.
            claim_token: Token returned by try_insert_in_progress().
            result: Serialized result to cache.
            result_expiry: When the cached result expires.

        Raises:
            ClaimLostError: If the record is not the caller's live claim.
            StoreUnavailableError: If the store cannot be reached.
        """
        ...

    async def release(self, key: str, claim_token: str) -> bool:
        """Delete the caller's IN_PROGRESS record so the key can be retried.

        Returns:
            True if the record was deleted, False if the caller no longer
            owned it.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        ...

    async def cleanup_expired(self) -> int:
        """Physically remove expired records.

        Returns:
            The number of records removed.
        """
        ...
