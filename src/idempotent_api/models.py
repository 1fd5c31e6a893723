"""Core type definitions and models for the idempotency engine.

This module provides the data structures persisted in the cache and
exchanged with the host: record states, result kinds, captured responses,
the per-key cache record, and problem details for client-facing errors.

Examples:
    Creating an in-progress record::

        from idempotent_api.models import CacheRecord, RecordState

        record = CacheRecord(
            fingerprint="a" * 64,
            state=RecordState.IN_PROGRESS,
            method="POST",
            path="/api/payments",
        )

    Completing it with a captured response::

        completed = record.complete(
            CachedResponse(
                status_code=201,
                headers={"location": ["/api/payments/1"]},
                body={"id": 1},
                media_type="application/json",
            )
        )
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class RecordState(str, Enum):
    """Lifecycle phase of a cache record.

    The two phases are mutually exclusive: a record is created
    IN_PROGRESS and is either replaced by a COMPLETED record or removed.

    Attributes:
        IN_PROGRESS: The first request for the key is executing its handler.
        COMPLETED: The handler finished and its response is stored.
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ResultKind(str, Enum):
    """Closed set of result shapes a handler can produce.

    The host tags each result with one of these kinds. Kinds listed in
    ``IdempotencyOptions.excluded_result_kinds`` are never cached.

    Attributes:
        OBJECT: A structured body (maps, lists, scalars) rendered by the host.
        CONTENT: Raw bytes or text with an explicit media type.
        STATUS: A status code without a body.
        STREAM: A streamed body of unknown length.
        FILE: A file download.
    """

    OBJECT = "OBJECT"
    CONTENT = "CONTENT"
    STATUS = "STATUS"
    STREAM = "STREAM"
    FILE = "FILE"


class CachedResponse(BaseModel):
    """A captured handler response that can be replayed for duplicates.

    Transport-managed headers (content-type, content-length, ...) are never
    stored; the media type is kept separately so the host can re-derive
    Content-Type on replay.

    Attributes:
        status_code: HTTP status code.
        headers: Response headers, each name mapped to its list of values.
        body: Structured body value, bytes, text, or None.
        media_type: Media type of the body (e.g. "application/json").
        kind: The shape of the captured result.

    Examples:
        >>> response = CachedResponse(status_code=200, body={"id": 1})
        >>> response.kind
        <ResultKind.OBJECT: 'OBJECT'>
    """

    status_code: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 201, 400, 500],
    )
    headers: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Response headers without transport-managed headers",
        examples=[{"location": ["/api/orders/1"], "x-trace": ["a", "b"]}],
    )
    body: Any = Field(
        default=None,
        description="Response body: structured value, bytes, text, or None",
    )
    media_type: str | None = Field(
        default=None,
        description="Media type used by the host to re-derive Content-Type",
        examples=["application/json", "text/plain; charset=utf-8"],
    )
    kind: ResultKind = Field(
        default=ResultKind.OBJECT,
        description="Shape of the captured result",
    )

    @property
    def is_success(self) -> bool:
        """Whether the status code is in the 2xx class."""
        return 200 <= self.status_code < 300


class CacheRecord(BaseModel):
    """The single mutual-exclusion unit stored per (prefix, key).

    The fingerprint is fixed when the record is created; only the state and
    the attached response change, and only once (IN_PROGRESS -> COMPLETED).

    Attributes:
        fingerprint: SHA-256 fingerprint of the first request (64 hex chars).
        state: Current lifecycle phase.
        method: HTTP method of the first request.
        path: URL path of the first request.
        response: The captured response, present only when COMPLETED.
    """

    fingerprint: str = Field(
        ...,
        description="SHA-256 hash of the request fingerprint (64 hex characters)",
        pattern=r"^[a-f0-9]{64}$",
        examples=["a" * 64],
    )
    state: RecordState = Field(
        ...,
        description="Lifecycle phase of the record",
    )
    method: str = Field(default="", description="HTTP method of the first request")
    path: str = Field(default="", description="URL path of the first request")
    response: CachedResponse | None = Field(
        default=None,
        description="Captured response (set when COMPLETED)",
    )

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        """Store methods uppercase."""
        return v.upper()

    @model_validator(mode="after")
    def validate_state_response(self) -> "CacheRecord":
        """Ensure a response is attached if and only if the record is COMPLETED.

        Raises:
            ValueError: If state and response disagree.
        """
        if self.state == RecordState.COMPLETED and self.response is None:
            raise ValueError("response must be provided when state is COMPLETED")
        if self.state == RecordState.IN_PROGRESS and self.response is not None:
            raise ValueError("response must be None when state is IN_PROGRESS")
        return self

    def complete(self, response: CachedResponse) -> "CacheRecord":
        """Return the COMPLETED successor of this IN_PROGRESS record.

        Args:
            response: The captured handler response.

        Returns:
            A new record with the same fingerprint, method and path.

        Raises:
            ValueError: If this record is already COMPLETED.
        """
        if self.state == RecordState.COMPLETED:
            raise ValueError("Completed records are write-once")
        return CacheRecord(
            fingerprint=self.fingerprint,
            state=RecordState.COMPLETED,
            method=self.method,
            path=self.path,
            response=response,
        )


class ProblemDetails(BaseModel):
    """Machine-readable problem description for client errors (RFC 9457).

    Examples:
        >>> ProblemDetails(detail="The Idempotency header key is not found.").status
        400
    """

    type: str = Field(default="https://tools.ietf.org/html/rfc9110#section-15.5.1")
    title: str = Field(default="Bad Request")
    status: int = Field(default=400, ge=400, le=599)
    detail: str
