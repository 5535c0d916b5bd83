"""FastAPI application exposing the idempotent fetch handler.

The app translates HTTP requests into handler events and handler responses
back into HTTP responses:

    POST /helloidem  {"address": "https://checkip.amazonaws.com", "delay": 8}

Every request gets a deadline of ``invocation_timeout_seconds`` from its
arrival. The handler registers it with the coordinator, which caps the
claim's in-progress expiry at the deadline, and the adapter cancels the
invocation when the deadline passes. A cancelled invocation answers 504 and
leaves its claim in place until it expires; it never completes the record
after another caller could have reclaimed the key.

Examples:
    Serving with uvicorn::

        from idempotent_fetch.adapters.asgi import create_app
        from idempotent_fetch.config import IdempotencyConfig

        app = create_app(IdempotencyConfig(storage_backend="dynamodb"))

    Testing with an injected store and service::

        app = create_app(config, storage=MemoryStorageAdapter(), service=fake_service)
        client = TestClient(app)
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.requests import Request
from starlette.responses import Response

from idempotent_fetch import __version__
from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.core.cleanup import start_cleanup_task, stop_cleanup_task
from idempotent_fetch.exceptions import KeyResolutionError
from idempotent_fetch.handler import TIMEOUT_BODY, HandlerResponse, RequestHandler
from idempotent_fetch.observability.logging import configure_logging, get_logger
from idempotent_fetch.observability.metrics import record_outcome
from idempotent_fetch.service import LocationService
from idempotent_fetch.storage import StorageAdapter, create_storage

logger = get_logger(__name__)


async def build_event(request: Request, key_path: str) -> dict[str, Any]:
    """Convert a Starlette request into a handler event.

    Raises:
        KeyResolutionError: If the body is not valid UTF-8.
    """
    raw = await request.body()
    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise KeyResolutionError(
            f"Request body is not valid UTF-8 (byte {e.start}): {e.reason}",
            path=key_path,
        ) from e
    return {
        "body": body,
        "headers": dict(request.headers),
        "path": request.url.path,
        "httpMethod": request.method,
        "queryStringParameters": dict(request.query_params),
    }


def create_app(
    config: IdempotencyConfig | None = None,
    storage: StorageAdapter | None = None,
    service: LocationService | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration (defaults if not provided)
        storage: Storage adapter; built from ``config`` if not provided
        service: Business logic; built from ``config`` if not provided

    Returns:
        The configured FastAPI app. ``app.state.storage`` and
        ``app.state.handler`` expose the wiring.
    """
    config = config or IdempotencyConfig()
    if storage is None:
        storage = create_storage(config)
    handler = RequestHandler.from_config(config, storage, service)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        task = start_cleanup_task(storage, config.cleanup_interval_seconds)
        try:
            yield
        finally:
            if task is not None:
                await stop_cleanup_task(task)

    app = FastAPI(
        title="Idempotent Fetch",
        description="Fetches a remote page at most once per request key",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.storage = storage
    app.state.handler = handler

    @app.post("/helloidem")
    async def hello_idem(request: Request) -> Response:
        """Fetch the requested address, at most once per idempotency key."""
        event = await build_event(request, config.key_path)
        budget = config.invocation_timeout_seconds
        timeout = asyncio.timeout_at(asyncio.get_running_loop().time() + budget)
        # Read after the loop clock so cancellation fires no later than the claim expires
        deadline = datetime.now(UTC) + timedelta(seconds=budget)
        with structlog.contextvars.bound_contextvars(path=request.url.path):
            try:
                async with timeout:
                    result = await handler.handle(event, deadline=deadline)
            except TimeoutError:
                if not timeout.expired():
                    raise
                logger.warning("handler.timeout", timeout_seconds=budget)
                record_outcome("timeout", 504)
                result = HandlerResponse(504, TIMEOUT_BODY)
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "storage_backend": config.storage_backend}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def create_app_from_env() -> FastAPI:
    """Build the app from ``IDEMPOTENCY_*`` environment variables."""
    config = IdempotencyConfig.from_env()
    configure_logging(level=config.log_level, json_output=config.json_logs)
    return create_app(config)
