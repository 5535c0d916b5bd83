"""
Pytest configuration and shared fixtures for idempotent_fetch tests.
"""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.storage.memory import MemoryStorageAdapter


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class GatedSleep:
    """Blocks every delay until ``gate`` is set."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.waiting = 0

    async def __call__(self, seconds: float) -> None:
        self.waiting += 1
        await self.gate.wait()


class Upstream:
    """httpx.MockTransport handler returning a new address on every call."""

    def __init__(self, status_code: int = 200) -> None:
        self.calls: list[httpx.Request] = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        return httpx.Response(self.status_code, text=f"203.0.113.{len(self.calls)}\n")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_event(address: str = "https://example.com", delay: int = 0, **extra: Any) -> dict[str, Any]:
    """Build a handler event with a JSON-encoded body."""
    return {"body": json.dumps({"address": address, "delay": delay, **extra})}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> IdempotencyConfig:
    return IdempotencyConfig(in_progress_ttl_seconds=60, result_ttl_seconds=3600)


@pytest.fixture
def storage(clock: FakeClock) -> MemoryStorageAdapter:
    """Create a fresh memory storage adapter driven by the fake clock."""
    return MemoryStorageAdapter(clock=clock)


@pytest.fixture
def sample_key() -> str:
    return "fetch-location#5d41402abc4b2a76b9719d911017c592"
