"""Request handler: the entry point wrapping the business logic.

The handler derives the idempotency key from the incoming event, runs the
business logic through the coordinator and maps the outcome to a response:

    Success                  -> 200, the (possibly replayed) result
    Conflict                 -> 409 {"message": "IdempotencyAlreadyInProgress"}
    Failure(UpstreamIOError) -> 500 {"message": "IO error occurred"}
    any other Failure        -> re-raised to the surrounding runtime

Key resolution errors are raised before the coordinator is involved, so a
request that cannot be de-duplicated never writes a record and never runs
the business logic.

Events have the shape of an API gateway proxy event; only ``body`` is
required::

    {"body": "{\\"address\\": \\"https://example.com\\", \\"delay\\": 0}"}
"""

import json
from datetime import datetime
from typing import Any

import structlog

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.core.coordinator import Coordinator
from idempotent_fetch.core.outcome import Conflict, Success
from idempotent_fetch.exceptions import UpstreamIOError
from idempotent_fetch.keys import KeyExtractor
from idempotent_fetch.observability.logging import get_logger
from idempotent_fetch.observability.metrics import record_outcome
from idempotent_fetch.service import LocationService
from idempotent_fetch.storage.base import StorageAdapter

logger = get_logger(__name__)

RESPONSE_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

CONFLICT_BODY = json.dumps({"message": "IdempotencyAlreadyInProgress"})
IO_ERROR_BODY = json.dumps({"message": "IO error occurred"})
TIMEOUT_BODY = json.dumps({"message": "Invocation timed out"})


class HandlerResponse:
    """Transport-neutral response.

    Attributes:
        status_code: HTTP status code
        body: JSON body as text
        headers: Response headers
    """

    def __init__(self, status_code: int, body: str, headers: dict[str, str] | None = None) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = dict(RESPONSE_HEADERS) if headers is None else headers

    def json(self) -> Any:
        return json.loads(self.body)


class RequestHandler:
    """Maps events to responses through the idempotency coordinator.

    Attributes:
        coordinator: Coordinator guarding the business logic.
        service: The business logic.
        extractor: Key extractor configured with the key path.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        service: LocationService,
        extractor: KeyExtractor,
    ) -> None:
        self.coordinator = coordinator
        self.service = service
        self.extractor = extractor

    @classmethod
    def from_config(
        cls,
        config: IdempotencyConfig,
        storage: StorageAdapter,
        service: LocationService | None = None,
    ) -> "RequestHandler":
        """Wire a handler from configuration and a storage adapter."""
        return cls(
            coordinator=Coordinator(storage, config),
            service=service or LocationService(config),
            extractor=KeyExtractor(config),
        )

    async def handle(
        self,
        event: dict[str, Any],
        deadline: datetime | None = None,
    ) -> HandlerResponse:
        """Handle one invocation.

        Args:
            event: The request event; ``event["body"]`` holds the raw JSON body.
            deadline: When the enclosing invocation will be cut off.

        Returns:
            The response to send.

        Raises:
            KeyResolutionError: If the idempotency key cannot be derived.
            StoreUnavailableError: If the store cannot be reached.
            IdempotencyError: For non-I/O failures of the business logic.
        """
        self.coordinator.register_deadline(deadline)

        key = self.extractor.derive_key(event)
        payload_hash = self.extractor.payload_hash(event)
        body = event.get("body") or ""

        with structlog.contextvars.bound_contextvars(idempotency_key=key):
            outcome = await self.coordinator.execute(
                key,
                lambda: self.service.run(body),
                payload_hash=payload_hash,
            )

        if isinstance(outcome, Success):
            record_outcome("replay" if outcome.replayed else "executed", 200)
            return HandlerResponse(200, outcome.body)

        if isinstance(outcome, Conflict):
            record_outcome("conflict", 409)
            return HandlerResponse(409, CONFLICT_BODY)

        if isinstance(outcome.error, UpstreamIOError):
            record_outcome("failure", 500)
            logger.warning("handler.io_error", key=key, error=outcome.error.message)
            return HandlerResponse(500, IO_ERROR_BODY)

        logger.error(
            "handler.failed",
            key=key,
            error=str(outcome.error),
            error_type=type(outcome.error).__name__,
        )
        raise outcome.error
