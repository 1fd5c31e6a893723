"""Custom exceptions for the idempotency engine.

This module defines the exception hierarchy used throughout the engine to
signal idempotency decisions (missing keys, payload mismatches) and
infrastructure failures (locks, serialization, cache backends).

Idempotency decisions are recovered at the host boundary into 4xx
responses. Infrastructure failures are logged and propagated according to
the configured policy.

Examples:
    Handling a missing key::

        from idempotent_api.exceptions import KeyValidationError

        try:
            key = extract_idempotency_key(request.headers, options)
        except KeyValidationError as e:
            return Response(status_code=400, content=e.message)

    Handling a lock timeout::

        from idempotent_api.exceptions import LockAcquisitionFailure

        try:
            admission = await coordinator.admit(key, fingerprint, method, path)
        except LockAcquisitionFailure as e:
            logger.warning("idempotency.lock_failed", operation=e.operation)
            return Response(status_code=409, headers={"retry-after": "1"})
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    All exceptions raised by the engine inherit from this base class,
    allowing callers to catch all engine-specific errors with a single
    except clause. Faults raised by the wrapped handler are never wrapped
    in this type.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class KeyValidationError(IdempotencyError):
    """The idempotency key header is missing, empty or not unique.

    Raised before any fingerprinting or cache access. The host must turn
    this into a 400 Bad Request without invoking the handler.

    Attributes:
        message: Human-readable error description.
        header_name: The configured idempotency header name.
    """

    def __init__(self, message: str, header_name: str) -> None:
        """Initialize the validation error.

        Args:
            message: Human-readable error description.
            header_name: The configured idempotency header name.
        """
        super().__init__(message)
        self.header_name = header_name


class HashMismatchError(IdempotencyError):
    """Same idempotency key, different request fingerprint.

    The client reused a key for a request with a different method, path or
    body. The stored record is left untouched and the host must reject the
    request with a 400-class response.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that was reused.
        stored_fingerprint: The fingerprint recorded by the first request.
        request_fingerprint: The fingerprint of the incoming request.

    Examples:
        Raising a mismatch::

            if record.fingerprint != fingerprint:
                raise HashMismatchError(
                    message=f"The Idempotency header key value '{key}' was used in a different request.",
                    key=key,
                    stored_fingerprint=record.fingerprint,
                    request_fingerprint=fingerprint,
                )
    """

    def __init__(
        self,
        message: str,
        key: str,
        stored_fingerprint: str,
        request_fingerprint: str,
    ) -> None:
        """Initialize the mismatch error with details.

        Args:
            message: Human-readable error description.
            key: The idempotency key that was reused.
            stored_fingerprint: The fingerprint stored in the cache.
            request_fingerprint: The fingerprint of the incoming request.
        """
        super().__init__(message)
        self.key = key
        self.stored_fingerprint = stored_fingerprint
        self.request_fingerprint = request_fingerprint


class LockAcquisitionFailure(IdempotencyError):
    """A lock on an idempotency record could not be obtained in time.

    Raised when the lock provider (or a lockable backend) times out, and
    when a concurrent request for the same in-flight key is still
    unresolved after the configured lock timeout.

    Attributes:
        message: Human-readable error description.
        key: The cache key the lock protects.
        operation: The operation that needed the lock
            (``get_or_set``, ``set``, ``remove``, ``wait_in_progress``).
        timeout_seconds: The timeout that was exceeded, None if locking
            is disabled.
    """

    def __init__(
        self,
        message: str,
        key: str,
        operation: str,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize the lock failure with details.

        Args:
            message: Human-readable error description.
            key: The cache key the lock protects.
            operation: The operation that needed the lock.
            timeout_seconds: The timeout that was exceeded.
        """
        super().__init__(message)
        self.key = key
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class SerializationFailure(IdempotencyError):
    """A cache record could not be encoded or decoded.

    Caching is best-effort: this error never blocks the real response.

    Attributes:
        message: Human-readable error description.
        operation: ``encode`` or ``decode``.
        cause: The underlying exception.
    """

    def __init__(self, message: str, operation: str, cause: Exception | None = None) -> None:
        """Initialize the serialization failure.

        Args:
            message: Human-readable error description.
            operation: ``encode`` or ``decode``.
            cause: The underlying exception.
        """
        super().__init__(message)
        self.operation = operation
        self.cause = cause


class StorageError(IdempotencyError):
    """Cache backend operation failed.

    Backends should raise this for transient failures (network, timeouts)
    instead of leaking backend-specific exceptions.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the storage error.

    Examples:
        Raising a storage error::

            try:
                await redis.get(key)
            except RedisError as e:
                raise StorageError(
                    message=f"Failed to retrieve key from Redis: {e}",
                    cause=e,
                ) from e
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        """Initialize the storage error with details.

        Args:
            message: Human-readable error description.
            cause: The underlying exception that caused the storage error.
        """
        super().__init__(message)
        self.cause = cause
