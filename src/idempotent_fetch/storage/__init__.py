"""Storage adapters for idempotency records.

All adapters implement the StorageAdapter protocol defined in base.py.

Available Adapters:
    - MemoryStorageAdapter: single-process, lock-guarded dictionary
    - DynamoDBStorageAdapter: conditional writes against a DynamoDB table
"""

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.storage.base import StorageAdapter
from idempotent_fetch.storage.dynamodb import DynamoDBStorageAdapter
from idempotent_fetch.storage.memory import MemoryStorageAdapter


def create_storage(config: IdempotencyConfig) -> StorageAdapter:
    """Build the storage adapter selected by ``config.storage_backend``."""
    if config.storage_backend == "dynamodb":
        return DynamoDBStorageAdapter.from_config(config)
    return MemoryStorageAdapter()


__all__ = [
    "StorageAdapter",
    "MemoryStorageAdapter",
    "DynamoDBStorageAdapter",
    "create_storage",
]
