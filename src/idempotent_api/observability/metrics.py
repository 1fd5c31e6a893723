"""Prometheus metrics for the idempotency engine.

The coordinator reports through the ``IdempotencyMetrics`` protocol, so the
metrics sink is optional and replaceable. ``PrometheusMetrics`` records
into the module-level counters below; ``NullMetrics`` discards everything.

Metrics include:

- Cache hits, misses and stores, labelled by method and path
- Lock acquisition failures, labelled by operation
- Hash mismatches and cancellations
- Responses not cached because of their status code
- Serialization failures, labelled by operation
- Cleanup operation tracking

Examples:
    Wiring the Prometheus sink::

        from idempotent_api.observability.metrics import PrometheusMetrics

        middleware = IdempotencyMiddleware(cache, options, metrics=PrometheusMetrics())
"""

from typing import Protocol, runtime_checkable

from prometheus_client import Counter

cache_hits = Counter(
    "idempotency_cache_hits_total",
    "Responses served from the idempotency cache",
    ["method", "path"],
)

cache_misses = Counter(
    "idempotency_cache_misses_total",
    "Requests admitted for first execution (no cached response)",
    ["method", "path"],
)

cache_stores = Counter(
    "idempotency_cache_stores_total",
    "Responses stored in the idempotency cache",
    ["method", "path"],
)

lock_failures = Counter(
    "idempotency_lock_failures_total",
    "Lock acquisition failures on idempotency records",
    ["operation"],
)

hash_mismatches = Counter(
    "idempotency_hash_mismatches_total",
    "Idempotency keys reused with different request data",
)

non_success_skips = Counter(
    "idempotency_cache_skips_total",
    "Responses not cached because of a non-success status code",
    ["method", "path", "status_code"],
)

cancellations = Counter(
    "idempotency_cancelled_total",
    "Idempotency records released because the handler raised",
)

serialization_failures = Counter(
    "idempotency_serialization_failures_total",
    "Cache records that could not be encoded or decoded",
    ["operation"],
)

# Cleanup operations counter
cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup operations performed",
)

# Cleanup records removed counter
cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by cleanup",
)


@runtime_checkable
class IdempotencyMetrics(Protocol):
    """Sink for idempotency counters."""

    def record_cache_hit(self, method: str, path: str) -> None: ...

    def record_cache_miss(self, method: str, path: str) -> None: ...

    def record_cache_store(self, method: str, path: str) -> None: ...

    def record_lock_failure(self, operation: str) -> None: ...

    def record_hash_mismatch(self) -> None: ...

    def record_non_success_skip(self, method: str, path: str, status_code: int) -> None: ...

    def record_cancelled(self) -> None: ...

    def record_serialization_failure(self, operation: str) -> None: ...


class NullMetrics:
    """Metrics sink that records nothing."""

    def record_cache_hit(self, method: str, path: str) -> None:
        pass

    def record_cache_miss(self, method: str, path: str) -> None:
        pass

    def record_cache_store(self, method: str, path: str) -> None:
        pass

    def record_lock_failure(self, operation: str) -> None:
        pass

    def record_hash_mismatch(self) -> None:
        pass

    def record_non_success_skip(self, method: str, path: str, status_code: int) -> None:
        pass

    def record_cancelled(self) -> None:
        pass

    def record_serialization_failure(self, operation: str) -> None:
        pass


class PrometheusMetrics:
    """Metrics sink backed by the module-level Prometheus counters."""

    def record_cache_hit(self, method: str, path: str) -> None:
        cache_hits.labels(method=method, path=path).inc()

    def record_cache_miss(self, method: str, path: str) -> None:
        cache_misses.labels(method=method, path=path).inc()

    def record_cache_store(self, method: str, path: str) -> None:
        cache_stores.labels(method=method, path=path).inc()

    def record_lock_failure(self, operation: str) -> None:
        lock_failures.labels(operation=operation).inc()

    def record_hash_mismatch(self) -> None:
        hash_mismatches.inc()

    def record_non_success_skip(self, method: str, path: str, status_code: int) -> None:
        non_success_skips.labels(method=method, path=path, status_code=str(status_code)).inc()

    def record_cancelled(self) -> None:
        cancellations.inc()

    def record_serialization_failure(self, operation: str) -> None:
        serialization_failures.labels(operation=operation).inc()


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation.

    Args:
        records_removed: Number of expired records removed

    Examples:
        >>> record_cleanup(42)
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
