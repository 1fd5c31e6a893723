"""Unit tests for custom exceptions.

Tests in this module verify that the exception hierarchy is correctly
defined and that exceptions carry the expected information.
"""

import pytest

from idempotent_api.exceptions import (
    HashMismatchError,
    IdempotencyError,
    KeyValidationError,
    LockAcquisitionFailure,
    SerializationFailure,
    StorageError,
)


class TestIdempotencyError:
    """Test suite for the base IdempotencyError exception."""

    def test_idempotency_error_creation(self):
        """IdempotencyError should be created with a message."""
        error = IdempotencyError("Test error message")
        assert str(error) == "Test error message"
        assert error.message == "Test error message"

    def test_idempotency_error_is_exception(self):
        """IdempotencyError should inherit from Exception."""
        assert isinstance(IdempotencyError("Test error"), Exception)


class TestKeyValidationError:
    """Test suite for KeyValidationError."""

    def test_carries_header_name(self):
        """KeyValidationError should remember which header was checked."""
        error = KeyValidationError("The Idempotency header key 'X' is not found.", header_name="X")
        assert error.header_name == "X"
        assert error.message == "The Idempotency header key 'X' is not found."


class TestHashMismatchError:
    """Test suite for HashMismatchError."""

    def test_hash_mismatch_error_creation(self):
        """HashMismatchError should be created with full details."""
        error = HashMismatchError(
            message="Fingerprint mismatch",
            key="payment-123",
            stored_fingerprint="a" * 64,
            request_fingerprint="b" * 64,
        )
        assert str(error) == "Fingerprint mismatch"
        assert error.key == "payment-123"
        assert error.stored_fingerprint == "a" * 64
        assert error.request_fingerprint == "b" * 64


class TestLockAcquisitionFailure:
    """Test suite for LockAcquisitionFailure."""

    def test_carries_operation_and_timeout(self):
        """LockAcquisitionFailure should name the operation that needed the lock."""
        error = LockAcquisitionFailure(
            "Could not lock", key="IdempAPI_k", operation="get_or_set", timeout_seconds=2.0
        )
        assert error.key == "IdempAPI_k"
        assert error.operation == "get_or_set"
        assert error.timeout_seconds == 2.0

    def test_timeout_defaults_to_none(self):
        """The timeout is optional (locking may be disabled)."""
        error = LockAcquisitionFailure("In progress", key="k", operation="wait_in_progress")
        assert error.timeout_seconds is None


class TestSerializationFailure:
    """Test suite for SerializationFailure."""

    def test_carries_cause(self):
        """SerializationFailure should keep the underlying exception."""
        cause = TypeError("unsupported")
        error = SerializationFailure("Failed to encode", operation="encode", cause=cause)
        assert error.operation == "encode"
        assert error.cause is cause


class TestStorageError:
    """Test suite for StorageError."""

    def test_storage_error_without_cause(self):
        """StorageError should be creatable without a cause."""
        error = StorageError("Connection failed")
        assert error.cause is None

    def test_storage_error_with_cause(self):
        """StorageError should keep the underlying exception."""
        cause = ConnectionError("Network unreachable")
        error = StorageError(message="Storage operation failed", cause=cause)
        assert error.cause is cause


@pytest.mark.parametrize(
    "error",
    [
        KeyValidationError("m", header_name="h"),
        HashMismatchError("m", key="k", stored_fingerprint="a", request_fingerprint="b"),
        LockAcquisitionFailure("m", key="k", operation="set"),
        SerializationFailure("m", operation="decode"),
        StorageError("m"),
    ],
)
def test_all_errors_share_the_base(error: IdempotencyError) -> None:
    """Every engine error can be caught as IdempotencyError."""
    with pytest.raises(IdempotencyError):
        raise error
