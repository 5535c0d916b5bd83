"""Custom exceptions for the idempotent fetch service.

This module defines the exception hierarchy used to signal key resolution
failures, upstream I/O failures, lost claims and persistence store
problems.

Examples:
    Handling an upstream failure::

        from idempotent_fetch.exceptions import UpstreamIOError

        try:
            payload = await service.run(body)
        except UpstreamIOError as e:
            logger.warning("fetch.failed", error=str(e))
            return HandlerResponse.io_error()

    Failing closed when the store is down::

        from idempotent_fetch.exceptions import StoreUnavailableError

        try:
            outcome = await coordinator.execute(key, fn)
        except StoreUnavailableError:
            # Never run the business logic without the claim
            raise
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class KeyResolutionError(IdempotencyError):
    """The idempotency key could not be derived from the request.

    Raised when the body is not valid JSON, the embedded JSON string cannot be
    decoded, or the configured path resolves to nothing. The request cannot be
    de-duplicated, so it must fail before any record is written.

    Attributes:
        message: Human-readable error description.
        path: The key path expression that failed to resolve.
    """

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.path = path


class UpstreamIOError(IdempotencyError):
    """The business logic failed to fetch the remote resource.

    Attributes:
        message: Human-readable error description.
        cause: The underlying transport exception, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StoreUnavailableError(IdempotencyError):
    """The persistence store could not be reached or rejected the call.

    Unlike a failed conditional write, this is never treated as "key is
    free": the invocation fails instead of running the business logic without
    a claim.

    Attributes:
        message: Human-readable error description.
        cause: The underlying backend exception, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ClaimLostError(IdempotencyError):
    """The caller tried to complete a claim it no longer owns.

    This happens when the in-progress expiry elapsed and another caller
    reclaimed the key, or when the record disappeared from the store.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key.
        claim_token: The stale claim token presented by the caller.
    """

    def __init__(self, message: str, key: str, claim_token: str) -> None:
        super().__init__(message)
        self.key = key
        self.claim_token = claim_token


class PayloadMismatchError(IdempotencyError):
    """A cached result exists for the key but the validated payload differs.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class InvalidTransitionError(IdempotencyError):
    """A lifecycle event is not legal from the record's current status.

    Attributes:
        message: Human-readable error description.
        current: The effective status the record was in.
        event: The lifecycle event that was attempted.
    """

    def __init__(self, message: str, current: str, event: str) -> None:
        super().__init__(message)
        self.current = current
        self.event = event


class RequestValidationError(IdempotencyError):
    """The request body does not match the business logic's input contract."""
