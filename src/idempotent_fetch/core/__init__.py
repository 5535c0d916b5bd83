"""Core idempotency logic.

This package contains:
- State machine: key lifecycle (ABSENT -> IN_PROGRESS -> COMPLETED)
- Coordinator: claim, execute, commit/release against a store
- Outcome: the tagged result returned by the coordinator
- Cleanup: background sweep of expired records
"""

from idempotent_fetch.core.coordinator import Coordinator
from idempotent_fetch.core.outcome import Conflict, Failure, Outcome, Success

__all__ = ["Coordinator", "Conflict", "Failure", "Outcome", "Success"]
