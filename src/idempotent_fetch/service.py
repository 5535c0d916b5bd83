"""Business logic: fetch a remote page and wait.

The service reads ``{"address": <url>, "delay": <seconds>}`` from the
request body, fetches the address, sleeps for the requested delay and
returns::

    {"message": "hello world", "location": "<fetched content>"}

The content is read line by line and re-joined with ``\\n``, so a trailing
newline (as returned by IP echo services) is dropped.

Examples:
    >>> async with httpx.AsyncClient() as client:
    ...     service = LocationService(IdempotencyConfig(), client=client)
    ...     await service.run('{"address": "https://checkip.amazonaws.com", "delay": 0}')
    {'message': 'hello world', 'location': '203.0.113.7'}
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.exceptions import RequestValidationError, UpstreamIOError
from idempotent_fetch.observability.logging import get_logger

logger = get_logger(__name__)


class FetchRequest(BaseModel):
    """Input of the business logic.

    Attributes:
        address: URL to fetch.
        delay: Seconds to wait after fetching; negative values mean no wait.
    """

    address: str = Field(..., min_length=1, examples=["https://checkip.amazonaws.com"])
    delay: int = Field(default=0, examples=[0, 8])

    @classmethod
    def from_body(cls, body: str | bytes) -> "FetchRequest":
        """Parse and validate a raw JSON body.

        Raises:
            RequestValidationError: If the body is not a valid request.
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as e:
            raise RequestValidationError(f"Invalid fetch request: {e}") from e


class LocationService:
    """Fetches a remote page and applies the configured delay.

    Attributes:
        config: Configuration providing the fetch timeout.
    """

    def __init__(
        self,
        config: IdempotencyConfig,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the service.

        Args:
            config: Configuration.
            client: Shared httpx client. When omitted, a client is created
                per call and closed afterwards.
            sleep: Delay implementation; tests inject a fake.
        """
        self.config = config
        self._client = client
        self._sleep = sleep

    async def run(self, body: str | bytes) -> dict[str, Any]:
        """Execute the business logic for a raw request body.

        Raises:
            RequestValidationError: If the body is not a valid request.
            UpstreamIOError: If the remote fetch fails.
        """
        request = FetchRequest.from_body(body)
        content = await self.fetch(request.address)
        logger.info("fetch.completed", address=request.address, location=content)
        await self._sleep(max(request.delay, 0))
        return {"message": "hello world", "location": content}

    async def fetch(self, address: str) -> str:
        """Fetch ``address`` and return its text content.

        Raises:
            UpstreamIOError: On an invalid URL, any transport error or a
                non-2xx status.
        """
        try:
            if self._client is not None:
                response = await self._client.get(address, timeout=self.config.fetch_timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.config.fetch_timeout_seconds) as client:
                    response = await client.get(address)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                "fetch.failed",
                address=address,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise UpstreamIOError(f"Failed to fetch {address}: {e}", cause=e) from e

        return "\n".join(response.text.splitlines())

