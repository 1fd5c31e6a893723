"""Observability utilities for the idempotency engine.

This package provides monitoring and debugging capabilities:
- Prometheus metrics behind a replaceable metrics sink protocol
- Structured logging with contextual information

These tools help operators understand engine behavior in production
and troubleshoot issues.
"""

from idempotent_api.observability.logging import configure_logging, get_logger, request_context
from idempotent_api.observability.metrics import (
    IdempotencyMetrics,
    NullMetrics,
    PrometheusMetrics,
    record_cleanup,
)

__all__ = [
    "configure_logging",
    "request_context",
    "get_logger",
    "IdempotencyMetrics",
    "NullMetrics",
    "PrometheusMetrics",
    "record_cleanup",
]
