"""Core type definitions for idempotency records.

This module provides the data structures persisted by the storage adapters:
the record status, the idempotency record itself and the result of an
attempt to claim a key.

Examples:
    Creating an in-progress record::

        from datetime import UTC, datetime, timedelta
        import uuid

        from idempotent_fetch.models import IdempotencyRecord, RecordStatus

        now = datetime.now(UTC)
        record = IdempotencyRecord(
            key="fetch-location#5d41402abc4b2a76b9719d911017c592",
            status=RecordStatus.IN_PROGRESS,
            in_progress_expiry=now + timedelta(seconds=60),
            result_expiry=now + timedelta(hours=1),
            claim_token=str(uuid.uuid4()),
            created_at=now,
        )

    Checking whether a record is still live::

        record.effective_status(datetime.now(UTC))
        # RecordStatus.IN_PROGRESS, or RecordStatus.ABSENT once expired
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class RecordStatus(str, Enum):
    """Status of an idempotency key.

    Attributes:
        ABSENT: No live record exists. Never persisted; a missing or expired
            record is reported with this status.
        IN_PROGRESS: A caller holds the claim and is executing.
        COMPLETED: Execution finished and the result is cached.
    """

    ABSENT = "ABSENT"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class IdempotencyRecord(BaseModel):
    """Stored record of a claimed or completed idempotency key.

    Attributes:
        key: Derived idempotency key; primary identity, never mutated.
        status: IN_PROGRESS or COMPLETED.
        result: Serialized JSON result, present only when COMPLETED.
        in_progress_expiry: Point after which an IN_PROGRESS record is stale
            and may be reclaimed.
        result_expiry: Point after which the record is treated as ABSENT.
        claim_token: UUID of the caller holding (or that held) the claim.
        payload_hash: Hash of the validated payload subset, if configured.
        created_at: When the record was first written.
    """

    key: str = Field(
        ...,
        description="Derived idempotency key",
        min_length=1,
        max_length=1024,
        examples=["fetch-location#5d41402abc4b2a76b9719d911017c592"],
    )
    status: RecordStatus = Field(
        ...,
        description="Persisted status (IN_PROGRESS or COMPLETED)",
    )
    result: str | None = Field(
        default=None,
        description="Serialized JSON result (COMPLETED only)",
        examples=['{"message": "hello world", "location": "203.0.113.7"}'],
    )
    in_progress_expiry: datetime | None = Field(
        default=None,
        description="Timestamp after which an IN_PROGRESS record is reclaimable",
    )
    result_expiry: datetime = Field(
        ...,
        description="Timestamp after which the record is logically absent",
    )
    claim_token: str | None = Field(
        default=None,
        description="UUID of the claimant",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )
    payload_hash: str | None = Field(
        default=None,
        description="Hash of the validated payload subset",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the record was created",
    )

    @field_validator("status")
    @classmethod
    def validate_persisted_status(cls, v: RecordStatus) -> RecordStatus:
        """Reject ABSENT, which is implied by a missing record and never stored."""
        if v == RecordStatus.ABSENT:
            raise ValueError("ABSENT is not a persistable status")
        return v

    @field_validator("claim_token")
    @classmethod
    def validate_claim_token(cls, v: str | None) -> str | None:
        """Validate that the claim token is a valid UUID if present.

        Raises:
            ValueError: If the claim token is not a valid UUID.
        """
        if v is not None:
            try:
                UUID(v)
            except ValueError as e:
                raise ValueError(f"Invalid UUID format for claim_token: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_result_matches_status(self) -> "IdempotencyRecord":
        """A result is present if and only if the record is COMPLETED."""
        if self.status == RecordStatus.COMPLETED and self.result is None:
            raise ValueError("COMPLETED records must carry a result")
        if self.status == RecordStatus.IN_PROGRESS and self.result is not None:
            raise ValueError("IN_PROGRESS records must not carry a result")
        return self

    def is_expired(self, now: datetime) -> bool:
        """Return True when the record should be treated as ABSENT at ``now``."""
        if self.result_expiry <= now:
            return True
        if self.status == RecordStatus.IN_PROGRESS and self.in_progress_expiry is not None:
            return self.in_progress_expiry <= now
        return False

    def effective_status(self, now: datetime) -> RecordStatus:
        """Status at ``now``, folding elapsed expiries into ABSENT.

        Examples:
            >>> record.effective_status(record.result_expiry)
            <RecordStatus.ABSENT: 'ABSENT'>
        """
        if self.is_expired(now):
            return RecordStatus.ABSENT
        return self.status

    def result_payload(self) -> Any:
        """Decode the stored result.

        Raises:
            ValueError: If the record has no result.
        """
        if self.result is None:
            raise ValueError(f"Record {self.key} has no stored result")
        return json.loads(self.result)


class ClaimResult(BaseModel):
    """Result of a conditional insert of an IN_PROGRESS record.

    Attributes:
        success: Whether the caller now holds the claim.
        claim_token: UUID token identifying the claim, present iff success.

    Examples:
        >>> ClaimResult(success=True, claim_token="550e8400-e29b-41d4-a716-446655440000")
        >>> ClaimResult(success=False)
    """

    success: bool = Field(
        ...,
        description="Whether the claim was acquired",
    )
    claim_token: str | None = Field(
        default=None,
        description="Claim token if acquired, None otherwise",
        validate_default=True,
    )

    @field_validator("claim_token")
    @classmethod
    def validate_token_with_success(cls, v: str | None, info: Any) -> str | None:
        """Validate that claim_token is present if and only if success is True."""
        if "success" in info.data:
            success = info.data["success"]
            if success and v is None:
                raise ValueError("claim_token must be provided when success is True")
            if not success and v is not None:
                raise ValueError("claim_token must be None when success is False")
        return v
