"""Scenario 5: Crash Recovery Conformance Tests

This module tests the engine's behavior when handlers fail or produce
results that must not be stored. Tests cover:

1. Handler raises: the key is released and a retry executes again
2. Repeated crashes on the same key
3. Non-success responses are not stored (unless configured)
4. Unreadable cache records are discarded
5. Streams and file downloads pass through uncached
6. Optional mode without a key

Key behaviors tested:
- No key is ever left blocked by a failed execution
- Only results that can be replayed faithfully are stored
"""

import asyncio
from collections.abc import Iterator

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse, StreamingResponse
from fastapi.testclient import TestClient

from idempotent_api.adapters.asgi import ASGIIdempotencyMiddleware
from idempotent_api.cache.memory import LockingMemoryCacheBackend
from idempotent_api.config import IdempotencyOptions


class Flaky:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"crash #{self.calls}")
        return self.calls


def create_app(
    backend: LockingMemoryCacheBackend, options: IdempotencyOptions, flaky: Flaky, tmp_path
) -> FastAPI:
    test_app = FastAPI()
    test_app.add_middleware(ASGIIdempotencyMiddleware, cache=backend, options=options)
    report = tmp_path / "report.csv"
    report.write_text("id,amount\n1,100\n")
    stream_calls: list[int] = []

    @test_app.post("/api/crash")
    async def crash(data: dict):
        return {"attempt": flaky(), **data}

    @test_app.post("/api/reject")
    async def reject(data: dict):
        flaky.calls += 1
        raise HTTPException(status_code=422, detail=f"rejected #{flaky.calls}")

    @test_app.post("/api/server-error")
    async def server_error(data: dict):
        flaky.calls += 1
        raise HTTPException(status_code=500, detail=f"failed #{flaky.calls}")

    @test_app.post("/api/export")
    async def export():
        stream_calls.append(1)

        async def rows():
            yield b"id,amount\n"
            yield f"{len(stream_calls)},100\n".encode()

        return StreamingResponse(rows(), media_type="text/csv")

    @test_app.post("/api/report")
    async def download():
        flaky.calls += 1
        return FileResponse(report, filename="report.csv")

    return test_app


@pytest.fixture
def backend() -> LockingMemoryCacheBackend:
    return LockingMemoryCacheBackend()


@pytest.fixture
def flaky() -> Flaky:
    return Flaky(failures=1)


@pytest.fixture
def client(backend, flaky, tmp_path) -> Iterator[TestClient]:
    app = create_app(backend, IdempotencyOptions(), flaky, tmp_path)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


class TestHandlerCrash:
    """Test that exceptions from the handler release the key."""

    def test_crash_returns_server_error(self, client: TestClient, backend) -> None:
        """Test that a crashing handler surfaces as a 500 and leaves no record.

        Verifies:
        - The host's error handling produces the response
        - Nothing remains in the cache for the key
        """
        response = client.post("/api/crash", json={"x": 1}, headers={"IdempotencyKey": "crash-1"})

        assert response.status_code == 500
        assert len(backend) == 0

    def test_retry_after_crash_executes(self, client: TestClient, flaky: Flaky) -> None:
        client.post("/api/crash", json={"x": 1}, headers={"IdempotencyKey": "crash-2"})

        retry = client.post("/api/crash", json={"x": 1}, headers={"IdempotencyKey": "crash-2"})
        replay = client.post("/api/crash", json={"x": 1}, headers={"IdempotencyKey": "crash-2"})

        assert retry.status_code == 200
        assert retry.json() == {"attempt": 2, "x": 1}
        assert retry.headers["Idempotent-Replay"] == "false"
        assert replay.json() == retry.json()
        assert replay.headers["Idempotent-Replay"] == "true"
        assert flaky.calls == 2

    def test_retry_after_crash_may_change_body(self, client: TestClient) -> None:
        """Test that a crashed request does not pin the key to its fingerprint."""
        client.post("/api/crash", json={"x": 1}, headers={"IdempotencyKey": "crash-3"})

        retry = client.post("/api/crash", json={"x": 2}, headers={"IdempotencyKey": "crash-3"})

        assert retry.status_code == 200


class TestMultipleCrashes:
    """Test repeated failures on the same key."""

    @pytest.fixture
    def flaky(self) -> Flaky:
        return Flaky(failures=3)

    def test_multiple_crashes_then_success(self, client: TestClient, flaky: Flaky) -> None:
        statuses = [
            client.post("/api/crash", json={}, headers={"IdempotencyKey": "multi"}).status_code
            for _ in range(5)
        ]

        assert statuses == [500, 500, 500, 200, 200]
        assert flaky.calls == 4


class TestNonSuccessResponses:
    """Test that error responses are not stored by default."""

    def test_client_error_not_cached(self, client: TestClient, flaky: Flaky) -> None:
        r1 = client.post("/api/reject", json={}, headers={"IdempotencyKey": "reject"})
        r2 = client.post("/api/reject", json={}, headers={"IdempotencyKey": "reject"})

        assert r1.status_code == r2.status_code == 422
        assert r1.json() != r2.json()
        assert flaky.calls == 2

    def test_server_error_not_cached(self, client: TestClient, backend) -> None:
        client.post("/api/server-error", json={}, headers={"IdempotencyKey": "err"})

        assert len(backend) == 0

    def test_error_cached_when_configured(self, backend, flaky, tmp_path) -> None:
        """Test cache_only_success_responses=False stores and replays errors."""
        options = IdempotencyOptions(cache_only_success_responses=False)
        with TestClient(create_app(backend, options, flaky, tmp_path)) as client:
            r1 = client.post("/api/server-error", json={}, headers={"IdempotencyKey": "err"})
            r2 = client.post("/api/server-error", json={}, headers={"IdempotencyKey": "err"})

        assert r1.status_code == r2.status_code == 500
        assert r2.json() == r1.json()
        assert r2.headers["Idempotent-Replay"] == "true"


class TestCorruptRecords:
    """Test recovery from records the codec cannot read."""

    @pytest.fixture
    def flaky(self) -> Flaky:
        return Flaky(failures=0)

    def test_unreadable_record_is_replaced(self, client: TestClient, backend) -> None:
        asyncio.run(backend.set("IdempAPI_corrupt", b"not a record", 3600))

        response = client.post("/api/crash", json={}, headers={"IdempotencyKey": "corrupt"})
        replay = client.post("/api/crash", json={}, headers={"IdempotencyKey": "corrupt"})

        assert response.status_code == 200
        assert response.headers["Idempotent-Replay"] == "false"
        assert replay.json() == response.json()
        assert replay.headers["Idempotent-Replay"] == "true"


class TestPassthroughResults:
    """Test results the engine must not capture."""

    def test_stream_passes_through_uncached(self, client: TestClient) -> None:
        """Test that streamed bodies reach the client and are not replayed.

        Verifies:
        - The body is delivered intact
        - Replay metadata marks it as a first execution
        - A retry streams again
        """
        r1 = client.post("/api/export", headers={"IdempotencyKey": "export"})
        r2 = client.post("/api/export", headers={"IdempotencyKey": "export"})

        assert r1.text == "id,amount\n1,100\n"
        assert r1.headers["Idempotent-Replay"] == "false"
        assert r2.text == "id,amount\n2,100\n"

    def test_file_download_passes_through_uncached(self, client: TestClient, flaky: Flaky, backend) -> None:
        r1 = client.post("/api/report", headers={"IdempotencyKey": "report"})
        r2 = client.post("/api/report", headers={"IdempotencyKey": "report"})

        assert r1.content == r2.content == b"id,amount\n1,100\n"
        assert "attachment" in r1.headers["content-disposition"]
        assert r2.headers["Idempotent-Replay"] == "false"
        assert flaky.calls == 2
        assert len(backend) == 0


class TestOptionalKey:
    """Test optional mode."""

    def test_requests_without_key_always_execute(self, backend, tmp_path) -> None:
        flaky = Flaky(failures=0)
        options = IdempotencyOptions(is_optional=True)
        with TestClient(create_app(backend, options, flaky, tmp_path)) as client:
            r1 = client.post("/api/crash", json={})
            r2 = client.post("/api/crash", json={})
            keyed = client.post("/api/crash", json={}, headers={"IdempotencyKey": "opt"})
            replay = client.post("/api/crash", json={}, headers={"IdempotencyKey": "opt"})

        assert [r1.json()["attempt"], r2.json()["attempt"], keyed.json()["attempt"]] == [1, 2, 3]
        assert "Idempotent-Replay" not in r1.headers
        assert replay.headers["Idempotent-Replay"] == "true"
