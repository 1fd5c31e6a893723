"""
Pytest configuration and shared fixtures for idempotent_api tests.
"""

import pytest

from idempotent_api.cache.access import AccessCache
from idempotent_api.cache.memory import LockingMemoryCacheBackend, MemoryCacheBackend
from idempotent_api.config import IdempotencyOptions


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMetrics:
    """Metrics sink that records every call as (name, args)."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def record_cache_hit(self, method: str, path: str) -> None:
        self.calls.append(("cache_hit", (method, path)))

    def record_cache_miss(self, method: str, path: str) -> None:
        self.calls.append(("cache_miss", (method, path)))

    def record_cache_store(self, method: str, path: str) -> None:
        self.calls.append(("cache_store", (method, path)))

    def record_lock_failure(self, operation: str) -> None:
        self.calls.append(("lock_failure", (operation,)))

    def record_hash_mismatch(self) -> None:
        self.calls.append(("hash_mismatch", ()))

    def record_non_success_skip(self, method: str, path: str, status_code: int) -> None:
        self.calls.append(("non_success_skip", (method, path, status_code)))

    def record_cancelled(self) -> None:
        self.calls.append(("cancelled", ()))

    def record_serialization_failure(self, operation: str) -> None:
        self.calls.append(("serialization_failure", (operation,)))


@pytest.fixture
def sample_idempotency_key() -> str:
    """Provide a sample idempotency key for tests."""
    return "test-key-12345"


@pytest.fixture
def sample_request_body() -> bytes:
    """Provide a sample request body for tests."""
    return b'{"x": 1}'


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def metrics() -> RecordingMetrics:
    """Provide a metrics sink that records calls."""
    return RecordingMetrics()


@pytest.fixture
def options() -> IdempotencyOptions:
    """Provide options with a short lock timeout so waits stay fast."""
    return IdempotencyOptions(lock_timeout_seconds=1.0)


@pytest.fixture(params=["lockable", "basic"])
def access_cache(request: pytest.FixtureRequest) -> AccessCache:
    """Provide an AccessCache over each backend capability."""
    if request.param == "lockable":
        return AccessCache.lockable(LockingMemoryCacheBackend())
    return AccessCache.basic(MemoryCacheBackend())
