"""Unit tests for AccessCache capability selection and dispatch.

Verifies:
- Capability detection and construction errors
- get_or_create semantics over BASIC and LOCKABLE backends
- The disabled lock sentinel bypasses locking entirely
- Lock failures name the operation that needed the lock
- Backend faults surface as StorageError carrying the original exception
"""

from contextlib import asynccontextmanager

import pytest

from idempotent_api.cache.access import AccessCache
from idempotent_api.cache.base import CacheCapability
from idempotent_api.cache.memory import (
    LockingMemoryCacheBackend,
    MemoryCacheBackend,
    MemoryLockProvider,
)
from idempotent_api.exceptions import LockAcquisitionFailure, StorageError


class FailingLockProvider:
    """Lock provider whose locks are never available."""

    def __init__(self) -> None:
        self.requested: list[str] = []

    @asynccontextmanager
    async def acquire(self, name: str, timeout_seconds: float):
        self.requested.append(name)
        raise LockAcquisitionFailure("busy", key=name, operation="lock", timeout_seconds=timeout_seconds)
        yield


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    """Tests for capability selection."""

    def test_from_backend_detects_lockable(self):
        cache = AccessCache.from_backend(LockingMemoryCacheBackend())

        assert cache.capability == CacheCapability.LOCKABLE
        assert cache.lock_provider is None

    def test_from_backend_detects_basic(self):
        cache = AccessCache.from_backend(MemoryCacheBackend())

        assert cache.capability == CacheCapability.BASIC
        assert isinstance(cache.lock_provider, MemoryLockProvider)

    def test_explicit_lock_provider_forces_basic(self):
        provider = MemoryLockProvider()
        cache = AccessCache.from_backend(LockingMemoryCacheBackend(), lock_provider=provider)

        assert cache.capability == CacheCapability.BASIC
        assert cache.lock_provider is provider

    def test_lockable_requires_get_or_create(self):
        with pytest.raises(ValueError, match="get_or_create"):
            AccessCache(MemoryCacheBackend(), CacheCapability.LOCKABLE)

    def test_basic_requires_lock_provider(self):
        with pytest.raises(ValueError, match="lock provider"):
            AccessCache(MemoryCacheBackend(), CacheCapability.BASIC)


# ============================================================================
# Operations (both capabilities)
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("lock_timeout", [1.0, None])
async def test_get_or_create_reports_creation(access_cache, lock_timeout):
    """The first call creates; later calls return the stored value."""
    value, created = await access_cache.get_or_create("k", lambda: b"first", 60, lock_timeout)
    assert (value, created) == (b"first", True)

    value, created = await access_cache.get_or_create("k", lambda: b"second", 60, lock_timeout)
    assert (value, created) == (b"first", False)


@pytest.mark.asyncio
async def test_set_and_remove(access_cache):
    await access_cache.set("k", b"v", 60, 1.0)
    assert await access_cache.backend.get("k") == b"v"

    await access_cache.remove("k", 1.0)
    assert await access_cache.backend.get("k") is None


@pytest.mark.asyncio
async def test_remove_then_create_again(access_cache):
    """A removed key can be created again by the next caller."""
    await access_cache.get_or_create("k", lambda: b"a", 60, 1.0)
    await access_cache.remove("k", 1.0)

    _, created = await access_cache.get_or_create("k", lambda: b"b", 60, 1.0)
    assert created is True


# ============================================================================
# Locking
# ============================================================================


class TestBasicLocking:
    """Tests for lock use on BASIC backends."""

    @pytest.fixture
    def provider(self) -> FailingLockProvider:
        return FailingLockProvider()

    @pytest.fixture
    def cache(self, provider) -> AccessCache:
        return AccessCache.basic(MemoryCacheBackend(), provider)

    @pytest.mark.asyncio
    async def test_get_or_create_lock_failure(self, cache, provider):
        with pytest.raises(LockAcquisitionFailure) as exc_info:
            await cache.get_or_create("IdempAPI_k", lambda: b"v", 60, 0.5)

        assert exc_info.value.operation == "get_or_set"
        assert exc_info.value.key == "IdempAPI_k"
        assert exc_info.value.timeout_seconds == 0.5
        assert provider.requested == ["IdempAPI_k:lock"]

    @pytest.mark.asyncio
    async def test_set_lock_failure(self, cache):
        with pytest.raises(LockAcquisitionFailure) as exc_info:
            await cache.set("k", b"v", 60, 0.5)

        assert exc_info.value.operation == "set"

    @pytest.mark.asyncio
    async def test_remove_lock_failure(self, cache):
        with pytest.raises(LockAcquisitionFailure) as exc_info:
            await cache.remove("k", 0.5)

        assert exc_info.value.operation == "remove"

    @pytest.mark.asyncio
    async def test_disabled_sentinel_skips_locks(self, cache, provider):
        """With locking disabled the provider is never asked for a lock."""
        await cache.get_or_create("k", lambda: b"v", 60, None)
        await cache.set("k", b"v2", 60, None)
        await cache.remove("k", None)

        assert provider.requested == []


@pytest.mark.asyncio
async def test_lockable_lock_failure_is_reported_as_get_or_set():
    backend = LockingMemoryCacheBackend()
    cache = AccessCache.lockable(backend)
    lock = await backend._locks.get("k")
    await lock.acquire()
    try:
        with pytest.raises(LockAcquisitionFailure) as exc_info:
            await cache.get_or_create("k", lambda: b"v", 60, 0.05)
    finally:
        lock.release()

    assert exc_info.value.operation == "get_or_set"
    assert exc_info.value.key == "k"


# ============================================================================
# Backend faults
# ============================================================================


class BrokenBackend(LockingMemoryCacheBackend):
    """Backend that stores nothing and fails every call."""

    async def get(self, key):
        raise ConnectionError("backend down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("backend down")

    async def remove(self, key):
        raise ConnectionError("backend down")


class TestStorageErrors:
    """Tests for backend faults crossing the AccessCache boundary."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("make_cache", [AccessCache.basic, AccessCache.lockable])
    @pytest.mark.parametrize("lock_timeout", [1.0, None])
    async def test_get_or_create_wraps_backend_fault(self, make_cache, lock_timeout):
        cache = make_cache(BrokenBackend())

        with pytest.raises(StorageError) as exc_info:
            await cache.get_or_create("k", lambda: b"v", 60, lock_timeout)

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert exc_info.value.__cause__ is exc_info.value.cause
        assert "get_or_set" in exc_info.value.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("make_cache", [AccessCache.basic, AccessCache.lockable])
    async def test_set_and_remove_wrap_backend_fault(self, make_cache):
        cache = make_cache(BrokenBackend())

        with pytest.raises(StorageError, match="set failed for 'k'"):
            await cache.set("k", b"v", 60, 1.0)
        with pytest.raises(StorageError, match="remove failed for 'k'"):
            await cache.remove("k", 1.0)

    @pytest.mark.asyncio
    async def test_lock_failures_are_not_wrapped(self):
        cache = AccessCache.basic(BrokenBackend(), FailingLockProvider())

        with pytest.raises(LockAcquisitionFailure):
            await cache.set("k", b"v", 60, 0.5)

    @pytest.mark.asyncio
    async def test_backend_storage_error_passes_through(self):
        """A backend that already raises StorageError is not wrapped twice."""
        original = StorageError("quota exceeded")

        class QuotaBackend(MemoryCacheBackend):
            async def set(self, key, value, ttl_seconds):
                raise original

        cache = AccessCache.basic(QuotaBackend())

        with pytest.raises(StorageError) as exc_info:
            await cache.set("k", b"v", 60, 1.0)

        assert exc_info.value is original
