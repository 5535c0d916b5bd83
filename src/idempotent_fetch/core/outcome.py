"""Outcomes returned by the idempotency coordinator.

The coordinator never raises for the expected paths: a cached or fresh
result is a :class:`Success`, a key held by another caller is a
:class:`Conflict`, and an error raised by the business logic is wrapped in a
:class:`Failure`. Callers branch on the type::

    outcome = await coordinator.execute(key, fn)
    if isinstance(outcome, Success):
        return outcome.body
    if isinstance(outcome, Conflict):
        ...
"""

from typing import Any


class Success:
    """The business logic result, fresh or replayed.

    Attributes:
        result: Deserialized result value.
        body: The serialized result exactly as stored; identical on every
            replay of the same record.
        replayed: True if the result came from the store without executing.
        execution_time_ms: Execution time for fresh results, None on replays.
    """

    def __init__(
        self,
        result: Any,
        body: str,
        replayed: bool,
        execution_time_ms: int | None = None,
    ) -> None:
        self.result = result
        self.body = body
        self.replayed = replayed
        self.execution_time_ms = execution_time_ms

    def __repr__(self) -> str:
        return f"Success(replayed={self.replayed}, body={self.body!r})"


class Conflict:
    """Another caller holds a live claim on the key.

    Attributes:
        key: The contested idempotency key.
    """

    def __init__(self, key: str) -> None:
        self.key = key

    def __repr__(self) -> str:
        return f"Conflict(key={self.key!r})"


class Failure:
    """The business logic (or completion of the claim) raised.

    Attributes:
        error: The exception raised.
    """

    def __init__(self, error: BaseException) -> None:
        self.error = error

    def __repr__(self) -> str:
        return f"Failure(error={self.error!r})"


Outcome = Success | Conflict | Failure
