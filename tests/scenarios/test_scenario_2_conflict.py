"""Scenario 2: In-Progress Conflict Conformance Tests

This module tests requests arriving while the same key is being executed:
- A retry during execution gets 409 {"message": "IdempotencyAlreadyInProgress"}
- The conflicting request never reaches the upstream
- The conflict does not disturb the running execution or its stored result
- Once the first execution completes, retries replay its result
- Payload validation turns a differing payload under a cached key into an error
"""

import asyncio

import httpx
import pytest

from conftest import GatedSleep, Upstream
from idempotent_fetch.adapters.asgi import create_app
from idempotent_fetch.config import IdempotencyConfig
from idempotent_fetch.service import LocationService
from idempotent_fetch.storage.memory import MemoryStorageAdapter

ADDRESS = "https://checkip.amazonaws.com"


# Fixtures
@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def sleep() -> GatedSleep:
    return GatedSleep()


def build_client(config, upstream, sleep) -> httpx.AsyncClient:
    service = LocationService(config, client=upstream.client(), sleep=sleep)
    app = create_app(config, storage=MemoryStorageAdapter(), service=service)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout=timeout)


# Tests
@pytest.mark.asyncio
async def test_retry_during_execution_gets_409(upstream, sleep):
    """Test that a second request for a running key is rejected, not executed."""
    async with build_client(IdempotencyConfig(), upstream, sleep) as client:
        first = asyncio.create_task(
            client.post("/helloidem", json={"address": ADDRESS, "delay": 8})
        )
        await wait_until(lambda: sleep.waiting == 1)

        second = await client.post("/helloidem", json={"address": ADDRESS, "delay": 8})

        assert second.status_code == 409
        assert second.json() == {"message": "IdempotencyAlreadyInProgress"}
        assert second.headers["access-control-allow-origin"] == "*"
        assert len(upstream.calls) == 1

        sleep.gate.set()
        first_response = await first

    assert first_response.status_code == 200
    assert first_response.json()["location"] == "203.0.113.1"


@pytest.mark.asyncio
async def test_completed_key_replays_after_conflict(upstream, sleep):
    async with build_client(IdempotencyConfig(), upstream, sleep) as client:
        first = asyncio.create_task(client.post("/helloidem", json={"address": ADDRESS}))
        await wait_until(lambda: sleep.waiting == 1)

        conflict = await client.post("/helloidem", json={"address": ADDRESS})
        sleep.gate.set()
        original = await first
        replay = await client.post("/helloidem", json={"address": ADDRESS})

    assert conflict.status_code == 409
    assert replay.status_code == 200
    assert replay.content == original.content
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_other_keys_unaffected_by_running_key(upstream, sleep):
    async with build_client(IdempotencyConfig(), upstream, sleep) as client:
        blocked = asyncio.create_task(
            client.post("/helloidem", json={"address": "https://slow.example.com"})
        )
        await wait_until(lambda: sleep.waiting == 1)

        other = asyncio.create_task(
            client.post("/helloidem", json={"address": "https://fast.example.com"})
        )
        await wait_until(lambda: sleep.waiting == 2)
        sleep.gate.set()

        responses = await asyncio.gather(blocked, other)

    assert [r.status_code for r in responses] == [200, 200]
    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_payload_mismatch_is_rejected(upstream):
    """Test that a cached key requested with a different validated payload errors."""
    sleep = GatedSleep()
    sleep.gate.set()
    config = IdempotencyConfig(payload_validation_path="parse_json(body).delay")
    service = LocationService(config, client=upstream.client(), sleep=sleep)
    app = create_app(config, storage=MemoryStorageAdapter(), service=service)
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)

    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.post("/helloidem", json={"address": ADDRESS, "delay": 0})
        same = await client.post("/helloidem", json={"address": ADDRESS, "delay": 0})
        different = await client.post("/helloidem", json={"address": ADDRESS, "delay": 5})

    assert first.status_code == 200
    assert same.content == first.content
    assert different.status_code == 500
    assert len(upstream.calls) == 1
