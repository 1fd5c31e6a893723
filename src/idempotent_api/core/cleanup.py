"""TTL-based cleanup background task for expired idempotency records.

In-process cache backends only drop an expired record when its key is read
again. This module provides a background task that periodically sweeps
expired records and unheld locks, so abandoned keys do not accumulate.

The cleanup task:
1. Runs at configurable intervals (default 5 minutes)
2. Calls backend.cleanup_expired(), and prunes idle locks of a
   MemoryLockProvider when one is given. An AccessCache may be passed in
   place of the backend; its backend is swept and its lock provider pruned
3. Reports metrics and logs for observability
4. Handles errors gracefully without crashing the application

Backends with built-in TTL (like Redis with PX) do not need the sweeper.

Examples:
    Start cleanup task in the background::

        from idempotent_api.cache.memory import LockingMemoryCacheBackend
        from idempotent_api.core.cleanup import start_cleanup_task

        backend = LockingMemoryCacheBackend()

        # Start background task
        task = await start_cleanup_task(
            backend=backend,
            interval_seconds=300,  # 5 minutes
        )

        # Later, when shutting down
        await stop_cleanup_task(task)

    Tie the sweeper to a FastAPI lifespan::

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            task = await start_cleanup_task(backend, interval_seconds=60)
            yield
            await stop_cleanup_task(task)

        app = FastAPI(lifespan=lifespan)
"""

import asyncio
from typing import Protocol

from idempotent_api.cache.access import AccessCache
from idempotent_api.cache.memory import MemoryLockProvider
from idempotent_api.observability.logging import get_logger
from idempotent_api.observability.metrics import record_cleanup

logger = get_logger(__name__)

# How long stop_cleanup_task waits before cancelling the sweeper
STOP_TIMEOUT_SECONDS = 5.0


class ExpiringBackend(Protocol):
    """A backend that can sweep its own expired records."""

    async def cleanup_expired(self) -> int: ...


def _sweep_targets(
    target: ExpiringBackend | AccessCache,
    lock_provider: MemoryLockProvider | None,
) -> tuple[ExpiringBackend, MemoryLockProvider | None]:
    if not isinstance(target, AccessCache):
        return target, lock_provider
    if lock_provider is None and isinstance(target.lock_provider, MemoryLockProvider):
        lock_provider = target.lock_provider
    return target.backend, lock_provider  # type: ignore[return-value]


async def sweep_once(
    backend: ExpiringBackend | AccessCache,
    lock_provider: MemoryLockProvider | None = None,
) -> int:
    """Run a single cleanup pass.

    Args:
        backend: Cache backend to sweep, or an AccessCache whose backend is
            swept and whose MemoryLockProvider is pruned
        lock_provider: Lock provider whose idle locks are pruned (optional)

    Returns:
        The number of expired records removed.
    """
    backend, lock_provider = _sweep_targets(backend, lock_provider)
    count = await backend.cleanup_expired()
    if lock_provider is not None:
        await lock_provider.prune()

    record_cleanup(count)
    if count > 0:
        logger.info("cleanup.completed", records_removed=count)
    else:
        logger.debug("cleanup.completed", records_removed=0)
    return count


async def cleanup_loop(
    backend: ExpiringBackend | AccessCache,
    interval_seconds: float = 300,
    stop_event: asyncio.Event | None = None,
    lock_provider: MemoryLockProvider | None = None,
) -> None:
    """Sweep expired records every ``interval_seconds`` until stopped.

    A failed pass is logged and the loop carries on with the next one.

    Args:
        backend: Cache backend (or AccessCache) to sweep
        interval_seconds: Time between cleanup runs (default 300s = 5 minutes)
        stop_event: Event to signal the loop to stop (optional)
        lock_provider: Lock provider whose idle locks are pruned (optional)
    """
    stop_event = stop_event or asyncio.Event()
    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            await sweep_once(backend, lock_provider)
        except Exception as e:
            logger.error("cleanup.failed", error=str(e), error_type=type(e).__name__)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except TimeoutError:
            continue

    logger.info("cleanup.stopped")


async def start_cleanup_task(
    backend: ExpiringBackend | AccessCache,
    interval_seconds: float = 300,
    lock_provider: MemoryLockProvider | None = None,
) -> asyncio.Task[None]:
    """Start the cleanup loop as a background task.

    Args:
        backend: Cache backend (or AccessCache) to sweep
        interval_seconds: Time between cleanup runs
        lock_provider: Lock provider whose idle locks are pruned (optional)

    Returns:
        The asyncio Task running the cleanup loop; pass it to
        stop_cleanup_task() on shutdown
    """
    stop_event = asyncio.Event()
    task = asyncio.create_task(
        cleanup_loop(
            backend=backend,
            interval_seconds=interval_seconds,
            stop_event=stop_event,
            lock_provider=lock_provider,
        )
    )
    task._stop_event = stop_event  # type: ignore[attr-defined]
    return task


async def stop_cleanup_task(task: asyncio.Task[None]) -> None:
    """Signal the cleanup task to stop and wait for it, cancelling it if it hangs."""
    stop_event: asyncio.Event | None = getattr(task, "_stop_event", None)
    if stop_event is not None:
        stop_event.set()

    try:
        await asyncio.wait_for(task, timeout=STOP_TIMEOUT_SECONDS)
    except TimeoutError:
        logger.warning("cleanup.stop_timeout", timeout_seconds=STOP_TIMEOUT_SECONDS)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("cleanup.cancelled")
