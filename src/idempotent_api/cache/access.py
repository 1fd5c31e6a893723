"""Capability-aware access to the idempotency cache.

``AccessCache`` hides the difference between basic and lockable backends
behind three operations. The capability is fixed when the AccessCache is
built; every call dispatches on it once.

Passing ``lock_timeout_seconds=None`` (the disabled sentinel) skips all
locking on either capability: reads and writes go straight to the backend.

Backend failures leave this module in exactly two shapes:
``LockAcquisitionFailure`` when a lock is not obtained in time, and
``StorageError`` (carrying the backend's exception as ``cause``) for
anything else.
"""

from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager

from idempotent_api.cache.base import (
    BasicCacheBackend,
    CacheCapability,
    LockableCacheBackend,
    LockProvider,
)
from idempotent_api.cache.memory import MemoryLockProvider
from idempotent_api.exceptions import LockAcquisitionFailure, StorageError


class AccessCache:
    """Uniform cache access for the coordinator.

    Attributes:
        backend: The underlying cache backend.
        capability: BASIC or LOCKABLE.
        lock_provider: Lock provider used with BASIC backends.

    Examples:
        >>> from idempotent_api.cache.memory import LockingMemoryCacheBackend
        >>> cache = AccessCache.from_backend(LockingMemoryCacheBackend())
        >>> cache.capability
        <CacheCapability.LOCKABLE: 'LOCKABLE'>
    """

    def __init__(
        self,
        backend: BasicCacheBackend,
        capability: CacheCapability,
        lock_provider: LockProvider | None = None,
    ) -> None:
        """Initialize the access cache.

        Args:
            backend: The cache backend.
            capability: Which protocol the backend is used through.
            lock_provider: Required for BASIC backends.

        Raises:
            ValueError: If the backend does not implement the capability or a
                BASIC backend comes without a lock provider.
        """
        if capability == CacheCapability.LOCKABLE and not isinstance(backend, LockableCacheBackend):
            raise ValueError(f"{type(backend).__name__} does not implement get_or_create()")
        if capability == CacheCapability.BASIC and lock_provider is None:
            raise ValueError("A lock provider is required for BASIC cache backends")

        self.backend = backend
        self.capability = capability
        self.lock_provider = lock_provider

    @classmethod
    def basic(
        cls,
        backend: BasicCacheBackend,
        lock_provider: LockProvider | None = None,
    ) -> "AccessCache":
        """Use a backend through the BASIC protocol.

        Without a lock provider, a process-local MemoryLockProvider is used.
        It keeps one lock entry per key it has seen; pass this AccessCache to
        ``start_cleanup_task`` (or ``sweep_once``) so idle entries are pruned
        together with expired records.
        """
        return cls(backend, CacheCapability.BASIC, lock_provider or MemoryLockProvider())

    @classmethod
    def lockable(cls, backend: LockableCacheBackend) -> "AccessCache":
        """Use a backend through the LOCKABLE protocol."""
        return cls(backend, CacheCapability.LOCKABLE)

    @classmethod
    def from_backend(
        cls,
        backend: BasicCacheBackend,
        lock_provider: LockProvider | None = None,
    ) -> "AccessCache":
        """Select the capability from the backend.

        An explicit lock provider always selects BASIC; otherwise backends
        with get_or_create() are used as LOCKABLE.
        """
        if lock_provider is None and isinstance(backend, LockableCacheBackend):
            return cls.lockable(backend)
        return cls.basic(backend, lock_provider)

    async def get_or_create(
        self,
        key: str,
        factory: Callable[[], bytes],
        ttl_seconds: float,
        lock_timeout_seconds: float | None,
    ) -> tuple[bytes, bool]:
        """Return the existing value, or create it from factory.

        Returns:
            (value, created) where created is True when factory() was stored.

        Raises:
            LockAcquisitionFailure: With operation "get_or_set" on lock timeout.
            StorageError: If the backend fails.
        """
        if lock_timeout_seconds is None:
            return await self._get_or_create_unlocked(key, factory, ttl_seconds)

        if self.capability == CacheCapability.LOCKABLE:
            created = False

            def tracking_factory() -> bytes:
                nonlocal created
                created = True
                return factory()

            backend: LockableCacheBackend = self.backend  # type: ignore[assignment]
            try:
                with self._backend_errors(key, "get_or_set"):
                    value = await backend.get_or_create(
                        key, tracking_factory, ttl_seconds, lock_timeout_seconds
                    )
            except LockAcquisitionFailure as e:
                raise self._lock_failure(key, "get_or_set", lock_timeout_seconds) from e
            return value, created

        async with self._locked(key, "get_or_set", lock_timeout_seconds):
            return await self._get_or_create_unlocked(key, factory, ttl_seconds)

    async def set(
        self,
        key: str,
        value: bytes,
        ttl_seconds: float,
        lock_timeout_seconds: float | None,
    ) -> None:
        """Replace the value stored under key.

        Raises:
            LockAcquisitionFailure: With operation "set" on lock timeout.
            StorageError: If the backend fails.
        """
        if lock_timeout_seconds is None or self.capability == CacheCapability.LOCKABLE:
            with self._backend_errors(key, "set"):
                await self.backend.set(key, value, ttl_seconds)
            return

        async with self._locked(key, "set", lock_timeout_seconds):
            with self._backend_errors(key, "set"):
                await self.backend.set(key, value, ttl_seconds)

    async def remove(self, key: str, lock_timeout_seconds: float | None) -> None:
        """Delete the value stored under key.

        Raises:
            LockAcquisitionFailure: With operation "remove" on lock timeout.
            StorageError: If the backend fails.
        """
        if lock_timeout_seconds is None or self.capability == CacheCapability.LOCKABLE:
            with self._backend_errors(key, "remove"):
                await self.backend.remove(key)
            return

        async with self._locked(key, "remove", lock_timeout_seconds):
            with self._backend_errors(key, "remove"):
                await self.backend.remove(key)

    async def _get_or_create_unlocked(
        self,
        key: str,
        factory: Callable[[], bytes],
        ttl_seconds: float,
    ) -> tuple[bytes, bool]:
        with self._backend_errors(key, "get_or_set"):
            existing = await self.backend.get(key)
            if existing is not None:
                return existing, False
            value = factory()
            await self.backend.set(key, value, ttl_seconds)
        return value, True

    @contextmanager
    def _backend_errors(self, key: str, operation: str) -> Iterator[None]:
        try:
            yield
        except (LockAcquisitionFailure, StorageError):
            raise
        except Exception as e:
            raise StorageError(
                f"Cache {operation} failed for '{key}': {e}",
                cause=e,
            ) from e

    @asynccontextmanager
    async def _locked(
        self, key: str, operation: str, timeout_seconds: float
    ) -> AsyncIterator[None]:
        assert self.lock_provider is not None
        try:
            async with self.lock_provider.acquire(f"{key}:lock", timeout_seconds):
                yield
        except LockAcquisitionFailure as e:
            raise self._lock_failure(key, operation, timeout_seconds) from e

    def _lock_failure(
        self, key: str, operation: str, timeout_seconds: float
    ) -> LockAcquisitionFailure:
        return LockAcquisitionFailure(
            f"Could not lock idempotency record '{key}' for {operation} "
            f"within {timeout_seconds}s",
            key=key,
            operation=operation,
            timeout_seconds=timeout_seconds,
        )
