"""
Idempotency engine for Python web APIs.

Ensures that a mutating request carrying an idempotency key runs its
handler at most once: duplicates replay the stored response, key reuse
with a different payload is rejected, and a faulted handler frees the key
for retries.
"""

from idempotent_api.cache import AccessCache, LockingMemoryCacheBackend, MemoryCacheBackend
from idempotent_api.codec import ResponseCodec
from idempotent_api.config import IdempotencyOptions
from idempotent_api.core import (
    AdmitOutcome,
    HttpResult,
    IdempotencyCoordinator,
    IdempotencyMiddleware,
    Request,
)
from idempotent_api.exceptions import (
    HashMismatchError,
    IdempotencyError,
    KeyValidationError,
    LockAcquisitionFailure,
    SerializationFailure,
    StorageError,
)
from idempotent_api.fingerprint import compute_fingerprint
from idempotent_api.keys import extract_idempotency_key

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AccessCache",
    "AdmitOutcome",
    "HashMismatchError",
    "HttpResult",
    "IdempotencyCoordinator",
    "IdempotencyError",
    "IdempotencyMiddleware",
    "IdempotencyOptions",
    "KeyValidationError",
    "LockAcquisitionFailure",
    "LockingMemoryCacheBackend",
    "MemoryCacheBackend",
    "Request",
    "ResponseCodec",
    "SerializationFailure",
    "StorageError",
    "compute_fingerprint",
    "extract_idempotency_key",
]
