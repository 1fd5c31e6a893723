"""Response capture and replay for the idempotency engine.

This module converts between the host's handler results and the cached
form stored in Completed records:

1. ``capture_response`` strips transport-managed headers (Content-Type,
   Content-Length, Date, ...) and keeps the media type beside the body
2. ``replay_response`` rebuilds a result from the cache and adds the
   replay headers (Idempotent-Replay, the echoed key header)

The host re-derives Content-Type and Content-Length from the media type and
body when it renders a replayed result, so a replay never carries duplicate
or contradicting transport headers.

Examples:
    Basic replay::

        from idempotent_api.core.replay import replay_response
        from idempotent_api.models import CachedResponse

        cached = CachedResponse(
            status_code=200,
            headers={"location": ["/api/orders/1"]},
            body={"id": 1},
            media_type="application/json",
        )

        result = replay_response(cached, "payment-123", "IdempotencyKey")
        # result.status == 200
        # result.headers["idempotent-replay"] == ["true"]
        # result.headers["idempotencykey"] == ["payment-123"]
"""

from collections.abc import Iterable, Mapping
from typing import Any

from idempotent_api.models import CachedResponse, ResultKind
from idempotent_api.utils.headers import (
    HeaderMap,
    add_replay_headers,
    filter_response_headers,
    normalize_headers,
)


class HttpResult:
    """A handler result as seen by the engine.

    Adapters convert their framework's response objects into this form
    and back again.

    Attributes:
        status: HTTP status code (e.g., 200, 404, 500)
        headers: Response headers, lowercase names mapped to lists of values
        body: Structured value (OBJECT), bytes or text (CONTENT), or None
        media_type: Media type the host renders the body with
        kind: Shape of the result
        native: The host's own response object, for results passed through
            without being captured (e.g. streams)
    """

    def __init__(
        self,
        status: int,
        headers: Mapping[str, str | Iterable[str]] | Iterable[tuple[str, str]] | None = None,
        body: Any = None,
        media_type: str | None = None,
        kind: ResultKind = ResultKind.OBJECT,
        native: Any = None,
    ) -> None:
        self.status = status
        self.headers: HeaderMap = normalize_headers(headers)
        self.body = body
        self.media_type = media_type
        self.kind = kind
        self.native = native

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def __repr__(self) -> str:
        return f"HttpResult(status={self.status}, kind={self.kind.value}, media_type={self.media_type!r})"


def capture_response(result: HttpResult) -> CachedResponse:
    """Capture a handler result for storage in a Completed record.

    Args:
        result: The result produced by the handler

    Returns:
        CachedResponse without transport-managed headers

    Raises:
        ValueError: If the result cannot be represented (e.g. status code
            outside 100-599)
    """
    body = result.body
    if isinstance(body, (bytearray, memoryview)):
        body = bytes(body)

    return CachedResponse(
        status_code=result.status,
        headers=filter_response_headers(result.headers),
        body=body,
        media_type=result.media_type,
        kind=result.kind,
    )


def replay_response(
    cached: CachedResponse,
    key: str,
    key_header_name: str = "Idempotency-Key",
) -> HttpResult:
    """Reconstruct a handler result from a cached response.

    Transport-managed headers are filtered again so records written by
    other producers cannot smuggle them in.

    Args:
        cached: The cached response from a Completed record
        key: The idempotency key for this request
        key_header_name: Header used to echo the key back

    Returns:
        HttpResult marked with ``Idempotent-Replay: true``

    Examples:
        >>> cached = CachedResponse(
        ...     status_code=201,
        ...     headers={"date": ["Mon, 01 Jan 2024 00:00:00 GMT"], "x-a": ["1", "2"]},
        ...     body={"id": 1},
        ...     media_type="application/json",
        ... )
        >>> result = replay_response(cached, "payment-123")
        >>> result.status
        201
        >>> result.headers["idempotent-replay"]
        ['true']
        >>> result.headers["x-a"]
        ['1', '2']
        >>> "date" in result.headers
        False
    """
    headers = filter_response_headers(cached.headers)
    headers = add_replay_headers(headers, key, is_replay=True, key_header_name=key_header_name)

    return HttpResult(
        status=cached.status_code,
        headers=headers,
        body=cached.body,
        media_type=cached.media_type,
        kind=cached.kind,
    )
