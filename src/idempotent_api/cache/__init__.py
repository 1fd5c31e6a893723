"""Cache access for the idempotency engine.

This package defines the backend protocols (base.py), the
capability-aware AccessCache the coordinator is written against
(access.py), and process-local implementations (memory.py).

Available Backends:
    - MemoryCacheBackend: basic in-memory backend, paired with a lock provider
    - LockingMemoryCacheBackend: lockable in-memory backend
    - MemoryLockProvider: process-local locks for basic backends
"""

from idempotent_api.cache.access import AccessCache
from idempotent_api.cache.base import (
    BasicCacheBackend,
    CacheCapability,
    LockableCacheBackend,
    LockProvider,
)
from idempotent_api.cache.memory import (
    LockingMemoryCacheBackend,
    MemoryCacheBackend,
    MemoryLockProvider,
)

__all__ = [
    "AccessCache",
    "BasicCacheBackend",
    "CacheCapability",
    "LockableCacheBackend",
    "LockProvider",
    "LockingMemoryCacheBackend",
    "MemoryCacheBackend",
    "MemoryLockProvider",
]
