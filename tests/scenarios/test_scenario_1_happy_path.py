"""Scenario 1: Happy Path Conformance Tests

This module tests the core happy path through the HTTP application:
- First request fetches the address and returns 200
- The result is stored under the address-derived key
- A second identical request replays the stored body byte for byte
- Replays never contact the upstream again
- Fields outside the key (delay) do not create a new execution
- A body that cannot be keyed is rejected before anything is stored
- A body that is not valid UTF-8 is rejected the same way
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeSleep, Upstream
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
def app_storage() -> MemoryStorageAdapter:
    """Create a fresh memory storage adapter on the real clock."""
    return MemoryStorageAdapter()


@pytest.fixture
def client(upstream: Upstream, app_storage: MemoryStorageAdapter):
    """Create a test client for the app with a mocked upstream."""
    config = IdempotencyConfig()
    service = LocationService(config, client=upstream.client(), sleep=FakeSleep())
    app = create_app(config, storage=app_storage, service=service)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


# Tests
class TestHappyPath:
    """Test the happy path of the idempotent endpoint."""

    def test_first_request_executes(self, client: TestClient, upstream: Upstream) -> None:
        """Test that the first request fetches and returns the location."""
        response = client.post("/helloidem", json={"address": ADDRESS, "delay": 0})

        assert response.status_code == 200
        assert response.json() == {"message": "hello world", "location": "203.0.113.1"}
        assert response.headers["content-type"] == "application/json"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "GET, OPTIONS"
        assert len(upstream.calls) == 1
        assert upstream.calls[0].url.host == "checkip.amazonaws.com"

    def test_second_request_replays_exact_bytes(self, client: TestClient, upstream: Upstream) -> None:
        """Test that a retry gets exactly the same body without a second fetch."""
        first = client.post("/helloidem", json={"address": ADDRESS, "delay": 0})
        second = client.post("/helloidem", json={"address": ADDRESS, "delay": 0})

        assert second.status_code == 200
        assert second.content == first.content
        assert len(upstream.calls) == 1

    def test_replay_ignores_formatting_and_delay(self, client: TestClient, upstream: Upstream) -> None:
        first = client.post("/helloidem", json={"address": ADDRESS, "delay": 0})
        second = client.post(
            "/helloidem",
            content=json.dumps({"delay": 8, "address": ADDRESS}, indent=4),
            headers={"content-type": "application/json"},
        )

        assert second.content == first.content
        assert len(upstream.calls) == 1

    def test_different_address_executes_separately(
        self, client: TestClient, upstream: Upstream
    ) -> None:
        a = client.post("/helloidem", json={"address": "https://a.example.com"})
        b = client.post("/helloidem", json={"address": "https://b.example.com"})

        assert a.json()["location"] == "203.0.113.1"
        assert b.json()["location"] == "203.0.113.2"
        assert len(upstream.calls) == 2

    def test_many_retries_single_execution(self, client: TestClient, upstream: Upstream) -> None:
        bodies = {client.post("/helloidem", json={"address": ADDRESS}).content for _ in range(10)}

        assert len(bodies) == 1
        assert len(upstream.calls) == 1

    def test_result_stored_under_derived_key(
        self, client: TestClient, app_storage: MemoryStorageAdapter
    ) -> None:
        response = client.post("/helloidem", json={"address": ADDRESS})

        assert app_storage.record_count() == 1
        record = next(iter(app_storage._store.values()))
        assert record.key.startswith("fetch-location#")
        assert record.result == response.text


class TestRejectedRequests:
    def test_malformed_body_stores_nothing(
        self,
        client: TestClient,
        upstream: Upstream,
        app_storage: MemoryStorageAdapter,
    ) -> None:
        """Test that an unkeyable body fails the invocation before any write."""
        response = client.post(
            "/helloidem",
            content='{"address": ',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 500
        assert app_storage.record_count() == 0
        assert upstream.calls == []

    def test_missing_address_stores_nothing(
        self,
        client: TestClient,
        upstream: Upstream,
        app_storage: MemoryStorageAdapter,
    ) -> None:
        response = client.post("/helloidem", json={"delay": 1})

        assert response.status_code == 500
        assert app_storage.record_count() == 0
        assert upstream.calls == []

    def test_invalid_utf8_bodies_are_not_keyed(
        self,
        client: TestClient,
        upstream: Upstream,
        app_storage: MemoryStorageAdapter,
    ) -> None:
        """Test that distinct undecodable bodies never share a key."""
        for bad_byte in (b"\xff", b"\xfe"):
            response = client.post(
                "/helloidem",
                content=b'{"address": "https://example.com/' + bad_byte + b'"}',
                headers={"content-type": "application/json"},
            )
            assert response.status_code == 500

        assert app_storage.record_count() == 0
        assert upstream.calls == []


class TestOperationalEndpoints:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "storage_backend": "memory"}

    def test_metrics_exposes_outcomes(self, client: TestClient) -> None:
        client.post("/helloidem", json={"address": ADDRESS})
        client.post("/helloidem", json={"address": ADDRESS})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "idempotency_outcomes_total" in response.text
        assert 'result="replay"' in response.text
