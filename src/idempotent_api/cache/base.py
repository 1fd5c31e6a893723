"""Cache backend protocols for the idempotency engine.

This module defines the two backend shapes the engine can run on, and the
lock provider protocol that makes the simpler shape safe:

- **Basic** backends only offer ``get``/``set``/``remove``. Atomic
  create-if-absent is obtained by wrapping them with a ``LockProvider``.
- **Lockable** backends additionally offer ``get_or_create``, which reads
  or creates a value under the backend's own locking, so no external lock
  provider is needed.

The coordinator never talks to a backend directly; it goes through
``AccessCache`` (see access.py), which branches once on the capability.

Examples:
    Implementing a basic backend::

        class RedisBackend:
            async def get(self, key: str) -> bytes | None:
                return await self.redis.get(key)

            async def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
                await self.redis.set(key, value, px=int(ttl_seconds * 1000))

            async def remove(self, key: str) -> None:
                await self.redis.delete(key)

Thread Safety and Atomicity Requirements:
    All implementations MUST guarantee:

    1. **Atomic get_or_create**: for a given key, concurrent calls must
       invoke the factory at most once while a value exists.

    2. **Bounded locking**: lock waits never exceed the timeout passed in;
       on timeout, raise ``LockAcquisitionFailure``.

    3. **Expiration handling**: values past their TTL are treated as absent.

    4. **Error reporting**: backends may raise their own exceptions (or
       ``StorageError``); ``AccessCache`` reports every failure other than
       ``LockAcquisitionFailure`` as ``StorageError`` with the original as
       its cause.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Protocol, runtime_checkable


class CacheCapability(str, Enum):
    """Capability tag of a cache backend.

    Attributes:
        BASIC: get/set/remove only; atomicity comes from a LockProvider.
        LOCKABLE: native get_or_create with internal locking.
    """

    BASIC = "BASIC"
    LOCKABLE = "LOCKABLE"


@runtime_checkable
class BasicCacheBackend(Protocol):
    """Protocol for key/value cache backends without native locking.

    All methods are async and must be safe to call concurrently from
    multiple asyncio tasks. Values are opaque bytes.
    """

    async def get(self, key: str) -> bytes | None:
        """Return the value stored under key, or None if absent or expired."""
        ...

    async def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
        """Store value under key, replacing any existing value, for ttl_seconds."""
        ...

    async def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is not an error."""
        ...


@runtime_checkable
class LockableCacheBackend(BasicCacheBackend, Protocol):
    """Protocol for cache backends with atomic, internally locked get-or-create."""

    async def get_or_create(
        self,
        key: str,
        factory: Callable[[], bytes],
        ttl_seconds: float,
        lock_timeout_seconds: float,
    ) -> bytes:
        """Atomically return the existing value or store and return factory().

        The factory is called only when no live value exists, while the
        backend holds its lock for key.

        Raises:
            LockAcquisitionFailure: If the lock is not obtained within
                lock_timeout_seconds.
        """
        ...


@runtime_checkable
class LockProvider(Protocol):
    """Protocol for (distributed) lock providers used with basic backends."""

    def acquire(self, name: str, timeout_seconds: float) -> AbstractAsyncContextManager[None]:
        """Return an async context manager holding the named lock.

        Entering waits at most timeout_seconds.

        Raises:
            LockAcquisitionFailure: On entering, if the lock is not obtained
                in time.
        """
        ...
