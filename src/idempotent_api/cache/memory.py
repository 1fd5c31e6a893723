"""In-memory cache backends and lock provider with asyncio concurrency control.

This module provides process-local implementations of the backend
protocols in base.py:

    - MemoryCacheBackend: a basic backend (get/set/remove with TTL)
    - LockingMemoryCacheBackend: a lockable backend with per-key locks
    - MemoryLockProvider: per-name asyncio locks for basic backends

They are suitable for:
    - Single-process applications
    - Development and testing

For several processes sharing keys, plug in a distributed backend (and
lock provider) implementing the same protocols.

Thread Safety:
    - Each key (or lock name) has its own asyncio.Lock
    - A global lock protects the lock dictionaries
    - Locks nobody holds or waits for are dropped by cleanup_expired()

Examples:
    Basic usage::

        from idempotent_api.cache.memory import LockingMemoryCacheBackend

        backend = LockingMemoryCacheBackend()
        value = await backend.get_or_create(
            "IdempAPI_payment-123",
            factory=lambda: b"...",
            ttl_seconds=86400,
            lock_timeout_seconds=5,
        )
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from idempotent_api.exceptions import LockAcquisitionFailure


@dataclass
class _Entry:
    value: bytes
    expires_at: float


class _KeyedLocks:
    """Lazily created asyncio locks keyed by name.

    Each name counts the callers holding or waiting for its lock; prune()
    only drops names nobody uses, so a woken waiter keeps its lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}
        self._global_lock = asyncio.Lock()

    async def get(self, name: str) -> asyncio.Lock:
        async with self._global_lock:
            if name not in self._locks:
                self._locks[name] = asyncio.Lock()
            return self._locks[name]

    @asynccontextmanager
    async def held(self, name: str, timeout_seconds: float, operation: str) -> AsyncIterator[None]:
        async with self._global_lock:
            lock = self._locks.setdefault(name, asyncio.Lock())
            self._users[name] = self._users.get(name, 0) + 1
        try:
            try:
                async with asyncio.timeout(timeout_seconds):
                    await lock.acquire()
            except TimeoutError as e:
                raise LockAcquisitionFailure(
                    f"Could not acquire lock '{name}' within {timeout_seconds}s",
                    key=name,
                    operation=operation,
                    timeout_seconds=timeout_seconds,
                ) from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[name] -= 1
            if not self._users[name]:
                del self._users[name]

    async def prune(self) -> None:
        async with self._global_lock:
            idle = [
                name
                for name, lock in self._locks.items()
                if name not in self._users and not lock.locked()
            ]
            for name in idle:
                del self._locks[name]

    def __len__(self) -> int:
        return len(self._locks)


class MemoryCacheBackend:
    """Basic in-memory backend storing bytes with a TTL.

    Attributes:
        _store: Dictionary mapping keys to entries.
        _clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, _Entry] = {}
        self._clock = clock

    async def get(self, key: str) -> bytes | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            # Expired entries are treated as absent
            self._store.pop(key, None)
            return None
        return entry.value

    async def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
        self._store[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    async def remove(self, key: str) -> None:
        self._store.pop(key, None)

    async def cleanup_expired(self) -> int:
        """Remove expired entries from storage.

        Returns:
            The number of entries removed.
        """
        now = self._clock()
        expired_keys = [key for key, entry in self._store.items() if entry.expires_at <= now]
        for key in expired_keys:
            del self._store[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._store)


class LockingMemoryCacheBackend(MemoryCacheBackend):
    """Lockable in-memory backend with a per-key asyncio.Lock.

    get_or_create() holds the key's lock only for the read-then-create
    critical section, never across the handler's execution.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(clock)
        self._locks = _KeyedLocks()

    async def get_or_create(
        self,
        key: str,
        factory: Callable[[], bytes],
        ttl_seconds: float,
        lock_timeout_seconds: float,
    ) -> bytes:
        """Return the live value for key, or store and return factory().

        Raises:
            LockAcquisitionFailure: If the key's lock is not obtained in time.
        """
        async with self._locks.held(key, lock_timeout_seconds, operation="get_or_set"):
            existing = await self.get(key)
            if existing is not None:
                return existing
            value = factory()
            await self.set(key, value, ttl_seconds)
            return value

    async def cleanup_expired(self) -> int:
        """Remove expired entries and drop locks that are neither held nor awaited."""
        removed = await super().cleanup_expired()
        await self._locks.prune()
        return removed


class MemoryLockProvider:
    """Process-local lock provider for basic backends."""

    def __init__(self) -> None:
        self._locks = _KeyedLocks()

    @asynccontextmanager
    async def acquire(self, name: str, timeout_seconds: float) -> AsyncIterator[None]:
        """Hold the named lock for the body of the ``async with`` block.

        Raises:
            LockAcquisitionFailure: If the lock is not obtained in time.
        """
        async with self._locks.held(name, timeout_seconds, operation="lock"):
            yield

    async def prune(self) -> None:
        """Drop locks that are neither held nor awaited."""
        await self._locks.prune()

    def __len__(self) -> int:
        return len(self._locks)
