"""Per-request idempotency coordinator.

This module implements the state machine that decides, for one request,
whether its handler must run. The state lives in a single cache record per
key, which moves through:

    (no record) -> IN_PROGRESS -> COMPLETED

``admit`` resolves the request against that record:

- No record: an IN_PROGRESS record is created atomically -> MISS
- COMPLETED with the same fingerprint -> HIT (replay the stored response)
- Any record with a different fingerprint -> MISMATCH
- IN_PROGRESS with the same fingerprint: another request is executing the
  handler; poll until it completes (HIT), is cancelled (MISS), or the lock
  timeout elapses (LockAcquisitionFailure)

After a MISS the owner calls ``commit`` with the handler result, or
``cancel`` if the handler raised. Cancel frees the key for retries.

A coordinator holds the state of a single request and must not be shared.

Examples:
    Driving one request::

        coordinator = IdempotencyCoordinator(cache, options)
        admission = await coordinator.admit(key, fingerprint, "POST", "/api/payments")

        if admission.outcome == AdmitOutcome.MISS:
            try:
                result = await handler(request)
            except BaseException:
                await coordinator.cancel()
                raise
            await coordinator.commit(result)
"""

import asyncio
from enum import Enum
from typing import Any

from idempotent_api.cache.access import AccessCache
from idempotent_api.codec import ResponseCodec
from idempotent_api.config import IdempotencyOptions
from idempotent_api.core.replay import HttpResult, capture_response
from idempotent_api.exceptions import (
    HashMismatchError,
    LockAcquisitionFailure,
    SerializationFailure,
    StorageError,
)
from idempotent_api.models import CachedResponse, CacheRecord, RecordState
from idempotent_api.observability.logging import get_logger
from idempotent_api.observability.metrics import IdempotencyMetrics, NullMetrics

logger = get_logger(__name__)

# Interval between reads of a record owned by a concurrent request
POLL_INTERVAL_SECONDS = 0.05


class AdmitOutcome(str, Enum):
    """Result of admitting a request against its cache record.

    Attributes:
        MISS: This request owns the key; the handler must run.
        HIT: A completed response exists; the handler must not run.
        MISMATCH: The key was used with a different request; reject it.
    """

    MISS = "MISS"
    HIT = "HIT"
    MISMATCH = "MISMATCH"


class Admission:
    """Outcome of ``IdempotencyCoordinator.admit``.

    Attributes:
        outcome: MISS, HIT or MISMATCH
        response: The cached response (HIT only)
        error: The mismatch error to report (MISMATCH only)
    """

    def __init__(
        self,
        outcome: AdmitOutcome,
        response: CachedResponse | None = None,
        error: HashMismatchError | None = None,
    ) -> None:
        self.outcome = outcome
        self.response = response
        self.error = error

    def __repr__(self) -> str:
        return f"Admission(outcome={self.outcome.value})"


class IdempotencyCoordinator:
    """Admits, commits and cancels one request's idempotency record.

    Attributes:
        cache: Capability-aware cache access
        options: Engine options
        codec: Codec for cache records
        metrics: Metrics sink
        key: The idempotency key, set by admit()
        cache_key: The prefixed cache key, set by admit()
        outcome: The admit outcome, None before admit()
    """

    def __init__(
        self,
        cache: AccessCache,
        options: IdempotencyOptions,
        codec: ResponseCodec | None = None,
        metrics: IdempotencyMetrics | None = None,
    ) -> None:
        self.cache = cache
        self.options = options
        self.codec = codec or ResponseCodec()
        self.metrics = metrics or NullMetrics()

        self.key: str | None = None
        self.cache_key: str | None = None
        self.outcome: AdmitOutcome | None = None
        self._record: CacheRecord | None = None

    @property
    def owns_record(self) -> bool:
        """Whether this request created the IN_PROGRESS record and has not resolved it."""
        return self._record is not None

    async def admit(self, key: str, fingerprint: str, method: str, path: str) -> Admission:
        """Resolve a request against the record stored for its key.

        Args:
            key: Idempotency key from the request header
            fingerprint: Request fingerprint (see compute_fingerprint)
            method: HTTP method, recorded for metrics and logs
            path: URL path, recorded for metrics and logs

        Returns:
            Admission with outcome MISS, HIT or MISMATCH

        Raises:
            LockAcquisitionFailure: If the record lock could not be acquired, or
                a concurrent request with the same key did not finish within
                the lock timeout
            RuntimeError: If admit() is called twice on one coordinator
        """
        if self.outcome is not None:
            raise RuntimeError("A coordinator admits exactly one request")

        self.key = key
        self.cache_key = self.options.cache_key(key)
        log = logger.bind(key=key, method=method, path=path)

        record = CacheRecord(
            fingerprint=fingerprint,
            state=RecordState.IN_PROGRESS,
            method=method,
            path=path,
        )
        encoded = self.codec.encode_record(record)

        timeout = self.options.lock_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            try:
                data, created = await self.cache.get_or_create(
                    self.cache_key,
                    lambda: encoded,
                    self.options.expires_in_seconds,
                    timeout,
                )
            except LockAcquisitionFailure as e:
                self._lock_failed(log, e)
                raise

            if created:
                self._record = record
                self.outcome = AdmitOutcome.MISS
                self.metrics.record_cache_miss(method, path)
                log.info("idempotency.miss")
                return Admission(AdmitOutcome.MISS)

            try:
                existing = self.codec.decode_record(data)
            except SerializationFailure as e:
                # Unreadable records are replaced by this request
                self.metrics.record_serialization_failure(e.operation)
                log.warning("idempotency.corrupt_record", error=e.message)
                try:
                    await self.cache.remove(self.cache_key, timeout)
                except LockAcquisitionFailure as lock_error:
                    self._lock_failed(log, lock_error)
                    raise
                continue

            if existing.fingerprint != fingerprint:
                self.outcome = AdmitOutcome.MISMATCH
                self.metrics.record_hash_mismatch()
                log.warning(
                    "idempotency.mismatch",
                    state=existing.state.value,
                    stored_fingerprint=existing.fingerprint,
                    request_fingerprint=fingerprint,
                )
                return Admission(
                    AdmitOutcome.MISMATCH,
                    error=HashMismatchError(
                        f"The Idempotency header key value '{key}' was used in a different request.",
                        key=key,
                        stored_fingerprint=existing.fingerprint,
                        request_fingerprint=fingerprint,
                    ),
                )

            if existing.state == RecordState.COMPLETED:
                self.outcome = AdmitOutcome.HIT
                self.metrics.record_cache_hit(method, path)
                log.info("idempotency.hit", status_code=existing.response.status_code)
                return Admission(AdmitOutcome.HIT, response=existing.response)

            # Same request is in flight elsewhere
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is None or remaining <= 0:
                error = LockAcquisitionFailure(
                    f"Request with idempotency key '{key}' is still in progress",
                    key=key,
                    operation="wait_in_progress",
                    timeout_seconds=timeout,
                )
                self._lock_failed(log, error)
                raise error

            await asyncio.sleep(min(POLL_INTERVAL_SECONDS, remaining))

    async def commit(self, result: HttpResult) -> None:
        """Store the handler result for the owned key, or release the key.

        The record is released (not stored) when the result kind is
        excluded from caching, or when only successful responses are cached
        and the status is not 2xx. Encoding and storage failures are logged
        and release the key; they never reach the caller. If the calling task
        is cancelled mid-commit, the key is released before the cancellation
        propagates.

        Args:
            result: The handler result

        Raises:
            RuntimeError: If this coordinator does not own an IN_PROGRESS record
        """
        record = self._take_record()
        log = logger.bind(key=self.key, method=record.method, path=record.path)

        try:
            await self._store(record, result, log)
        except BaseException:
            await asyncio.shield(self._discard(log))
            raise

    async def _store(self, record: CacheRecord, result: HttpResult, log: Any) -> None:
        if result.kind in self.options.excluded_result_kinds:
            log.debug("idempotency.skipped", reason="excluded_kind", kind=result.kind.value)
            await self._discard(log)
            return

        if self.options.cache_only_success_responses and not result.is_success:
            self.metrics.record_non_success_skip(record.method, record.path, result.status)
            log.info("idempotency.skipped", reason="non_success", status_code=result.status)
            await self._discard(log)
            return

        try:
            data = self.codec.encode_record(record.complete(capture_response(result)))
        except SerializationFailure as e:
            self.metrics.record_serialization_failure(e.operation)
            log.error("idempotency.serialization_failed", operation=e.operation, error=e.message)
            await self._discard(log)
            return
        except ValueError as e:
            self.metrics.record_serialization_failure("capture")
            log.error("idempotency.serialization_failed", operation="capture", error=str(e))
            await self._discard(log)
            return

        try:
            await self.cache.set(
                self.cache_key,
                data,
                self.options.expires_in_seconds,
                self.options.lock_timeout_seconds,
            )
        except LockAcquisitionFailure as e:
            self._lock_failed(log, e)
            await self._discard(log)
            return
        except StorageError as e:
            log.error("idempotency.storage_failed", operation="set", error=e.message)
            await self._discard(log)
            return

        self.metrics.record_cache_store(record.method, record.path)
        log.info("idempotency.stored", status_code=result.status, kind=result.kind.value)

    async def cancel(self) -> None:
        """Remove the owned IN_PROGRESS record after the handler faulted.

        Safe to call when nothing is owned. Never raises: failures are logged
        so the handler's original exception reaches the host unchanged.
        """
        if self._record is None:
            return
        record = self._take_record()
        log = logger.bind(key=self.key, method=record.method, path=record.path)

        if await self._discard(log):
            self.metrics.record_cancelled()
            log.info("idempotency.cancelled")

    def _take_record(self) -> CacheRecord:
        if self._record is None:
            raise RuntimeError("commit() requires a MISS admission that is not yet resolved")
        record, self._record = self._record, None
        return record

    async def _discard(self, log: Any) -> bool:
        try:
            await self.cache.remove(self.cache_key, self.options.lock_timeout_seconds)
        except LockAcquisitionFailure as e:
            self._lock_failed(log, e)
            return False
        except StorageError as e:
            # The record stays IN_PROGRESS until it expires
            log.error("idempotency.storage_failed", operation="remove", error=e.message)
            return False
        return True

    def _lock_failed(self, log: Any, error: LockAcquisitionFailure) -> None:
        self.metrics.record_lock_failure(error.operation)
        log.warning(
            "idempotency.lock_failed",
            operation=error.operation,
            timeout_seconds=error.timeout_seconds,
        )
