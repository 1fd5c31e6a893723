"""Core idempotency logic.

This package contains the framework-agnostic engine:
- Coordinator: per-request admit/commit/cancel over one cache record
  (no record -> IN_PROGRESS -> COMPLETED)
- Replay: response capture and reconstruction
- Middleware: the hook sequence wrapping a handler
- Cleanup: background sweeping of expired records

Adapters wrap the middleware for specific web frameworks.
"""

from idempotent_api.core.coordinator import AdmitOutcome, Admission, IdempotencyCoordinator
from idempotent_api.core.middleware import IdempotencyMiddleware, Request
from idempotent_api.core.replay import HttpResult, capture_response, replay_response

__all__ = [
    "AdmitOutcome",
    "Admission",
    "HttpResult",
    "IdempotencyCoordinator",
    "IdempotencyMiddleware",
    "Request",
    "capture_response",
    "replay_response",
]
