"""DynamoDB storage adapter.

Records live in a table with a string partition key ``id``. The claim is a
single conditional ``put_item``, so DynamoDB's per-item linearizability gives
the at-most-one-claim guarantee across processes and machines:

    attribute_not_exists(id)
    OR expiration <= :now
    OR (status = IN_PROGRESS AND in_progress_expiration <= :now_ms)

Item layout:
    id                      S  idempotency key
    status                  S  IN_PROGRESS | COMPLETED
    data                    S  serialized result (COMPLETED only)
    expiration              N  epoch seconds; configure it as the table's TTL
                               attribute so DynamoDB deletes expired items
    in_progress_expiration  N  epoch milliseconds (IN_PROGRESS only)
    claim_token             S  UUID of the claimant
    validation              S  payload hash (optional)
    created_at              S  ISO 8601 timestamp

boto3 is synchronous; every call is pushed to a worker thread with
``asyncio.to_thread`` so the event loop keeps serving other invocations.

Examples:
    >>> adapter = DynamoDBStorageAdapter(table_name="idempotency", region_name="eu-west-1")
    >>> claim = await adapter.try_insert_in_progress(key, soon, later)
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.exceptions import ClaimLostError, StoreUnavailableError
from idempotent_fetch.models import ClaimResult, IdempotencyRecord, RecordStatus
from idempotent_fetch.observability.logging import get_logger
from idempotent_fetch.storage.base import StorageAdapter

logger = get_logger(__name__)

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

_ATTRIBUTE_NAMES = {
    "#id": "id",
    "#status": "status",
    "#data": "data",
    "#expiry": "expiration",
    "#in_progress_expiry": "in_progress_expiration",
    "#claim_token": "claim_token",
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _epoch_seconds(value: datetime) -> int:
    return int(value.timestamp())


def _epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


class DynamoDBStorageAdapter(StorageAdapter):
    """Storage adapter backed by a DynamoDB table.

    Attributes:
        table_name: Name of the idempotency table.
        native_ttl: Always True; the table's TTL on ``expiration`` deletes
            expired items.
    """

    native_ttl = True

    def __init__(
        self,
        table_name: str,
        client: Any | None = None,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the adapter.

        Args:
            table_name: Name of the idempotency table.
            client: Pre-built ``boto3`` DynamoDB client. Built from
                ``region_name``/``endpoint_url`` when omitted.
            region_name: AWS region for a client built here.
            endpoint_url: Endpoint override for a client built here.
            clock: Source of the current time.
        """
        self.table_name = table_name
        if client is None:
            client = boto3.client(
                "dynamodb",
                region_name=region_name,
                endpoint_url=endpoint_url,
            )
        self._client = client
        self._clock = clock

    @classmethod
    def from_config(cls, config: IdempotencyConfig) -> "DynamoDBStorageAdapter":
        return cls(
            table_name=config.table_name,
            region_name=config.aws_region,
            endpoint_url=config.dynamodb_endpoint_url,
        )

    async def try_insert_in_progress(
        self,
        key: str,
        in_progress_expiry: datetime,
        record_expiry: datetime,
        payload_hash: str | None = None,
    ) -> ClaimResult:
        """Conditionally put an IN_PROGRESS item.

        Returns:
            ClaimResult(success=False) when the condition fails, i.e. a live
            record exists.

        Raises:
            StoreUnavailableError: For any other DynamoDB or transport error.
        """
        now = self._clock()
        claim_token = str(uuid.uuid4())
        item: dict[str, Any] = {
            "id": {"S": key},
            "status": {"S": RecordStatus.IN_PROGRESS.value},
            "expiration": {"N": str(_epoch_seconds(record_expiry))},
            "in_progress_expiration": {"N": str(_epoch_millis(in_progress_expiry))},
            "claim_token": {"S": claim_token},
            "created_at": {"S": now.isoformat()},
        }
        if payload_hash is not None:
            item["validation"] = {"S": payload_hash}

        try:
            await self._call(
                "put_item",
                TableName=self.table_name,
                Item=item,
                ConditionExpression=(
                    "attribute_not_exists(#id) OR #expiry <= :now OR "
                    "(#status = :in_progress AND #in_progress_expiry <= :now_ms)"
                ),
                ExpressionAttributeNames={
                    "#id": "id",
                    "#expiry": "expiration",
                    "#status": "status",
                    "#in_progress_expiry": "in_progress_expiration",
                },
                ExpressionAttributeValues={
                    ":now": {"N": str(_epoch_seconds(now))},
                    ":now_ms": {"N": str(_epoch_millis(now))},
                    ":in_progress": {"S": RecordStatus.IN_PROGRESS.value},
                },
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return ClaimResult(success=False)
            raise self._unavailable("put_item", e) from e

        return ClaimResult(success=True, claim_token=claim_token)

    async def get(self, key: str) -> IdempotencyRecord | None:
        """Strongly consistent read of the live record for a key."""
        try:
            response = await self._call(
                "get_item",
                TableName=self.table_name,
                Key={"id": {"S": key}},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise self._unavailable("get_item", e) from e

        item = response.get("Item")
        if not item:
            return None
        record = self._item_to_record(item)
        if record.is_expired(self._clock()):
            return None
        return record

    async def complete(
        self,
        key: str,
        claim_token: str,
        result: str,
        result_expiry: datetime,
    ) -> None:
        """Conditionally update the caller's IN_PROGRESS item to COMPLETED.

        Raises:
            ClaimLostError: If the item is missing, completed, or carries a
                different claim token.
            StoreUnavailableError: For any other DynamoDB or transport error.
        """
        try:
            await self._call(
                "update_item",
                TableName=self.table_name,
                Key={"id": {"S": key}},
                UpdateExpression=(
                    "SET #status = :completed, #data = :data, #expiry = :expiry "
                    "REMOVE #in_progress_expiry"
                ),
                ConditionExpression=(
                    "attribute_exists(#id) AND #status = :in_progress "
                    "AND #claim_token = :claim_token"
                ),
                ExpressionAttributeNames=_ATTRIBUTE_NAMES,
                ExpressionAttributeValues={
                    ":completed": {"S": RecordStatus.COMPLETED.value},
                    ":in_progress": {"S": RecordStatus.IN_PROGRESS.value},
                    ":data": {"S": result},
                    ":expiry": {"N": str(_epoch_seconds(result_expiry))},
                    ":claim_token": {"S": claim_token},
                },
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise ClaimLostError(
                    f"Claim on key {key} is no longer held by this caller",
                    key=key,
                    claim_token=claim_token,
                ) from e
            raise self._unavailable("update_item", e) from e

    async def release(self, key: str, claim_token: str) -> bool:
        """Conditionally delete the caller's IN_PROGRESS item."""
        try:
            await self._call(
                "delete_item",
                TableName=self.table_name,
                Key={"id": {"S": key}},
                ConditionExpression="#status = :in_progress AND #claim_token = :claim_token",
                ExpressionAttributeNames={
                    "#status": "status",
                    "#claim_token": "claim_token",
                },
                ExpressionAttributeValues={
                    ":in_progress": {"S": RecordStatus.IN_PROGRESS.value},
                    ":claim_token": {"S": claim_token},
                },
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise self._unavailable("delete_item", e) from e
        return True

    async def cleanup_expired(self) -> int:
        """No-op: DynamoDB's TTL on ``expiration`` deletes expired items."""
        return 0

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        method = getattr(self._client, operation)
        try:
            response: dict[str, Any] = await asyncio.to_thread(method, **kwargs)
        except BotoCoreError as e:
            raise self._unavailable(operation, e) from e
        return response

    def _unavailable(self, operation: str, error: Exception) -> StoreUnavailableError:
        logger.error(
            "store.unavailable",
            operation=operation,
            table=self.table_name,
            error=str(error),
            error_type=type(error).__name__,
        )
        return StoreUnavailableError(
            f"DynamoDB {operation} on table {self.table_name} failed: {error}",
            cause=error,
        )

    @staticmethod
    def _item_to_record(item: dict[str, Any]) -> IdempotencyRecord:
        in_progress = item.get("in_progress_expiration")
        created_at = item.get("created_at")
        return IdempotencyRecord(
            key=item["id"]["S"],
            status=RecordStatus(item["status"]["S"]),
            result=item["data"]["S"] if "data" in item else None,
            in_progress_expiry=(
                datetime.fromtimestamp(int(in_progress["N"]) / 1000, tz=UTC)
                if in_progress
                else None
            ),
            result_expiry=datetime.fromtimestamp(int(item["expiration"]["N"]), tz=UTC),
            claim_token=item["claim_token"]["S"] if "claim_token" in item else None,
            payload_hash=item["validation"]["S"] if "validation" in item else None,
            created_at=(
                datetime.fromisoformat(created_at["S"]) if created_at else datetime.now(UTC)
            ),
        )
