"""Header filtering and manipulation utilities for the idempotency engine.

This module provides functions for:
- Normalizing header maps into lowercase names with lists of values
- Filtering transport-managed headers out of captured responses
- Adding replay-specific headers
- Case-insensitive header lookup
"""

from collections.abc import Iterable, Mapping

HeaderMap = dict[str, list[str]]

# Headers owned by the transport or the host's response writer. They are never
# captured, so a replay cannot duplicate or contradict what the host derives.
TRANSPORT_MANAGED_HEADERS = {
    "content-type",
    "content-length",
    "date",
    "server",
    "connection",
    "transfer-encoding",
    "keep-alive",
    "trailer",
    "upgrade",
    "proxy-connection",
    "proxy-authenticate",
    "proxy-authorization",
}

REPLAY_HEADER = "Idempotent-Replay"


def normalize_headers(
    headers: Mapping[str, str | Iterable[str]] | Iterable[tuple[str, str]] | None,
) -> HeaderMap:
    """Normalize headers into lowercase names mapped to lists of values.

    Accepts a mapping whose values are strings or lists of strings, or an
    iterable of (name, value) pairs such as ASGI raw headers decoded to str.
    Values for the same name are kept in arrival order.

    Example:
        >>> normalize_headers({"X-Tag": ["a", "b"], "Location": "/x"})
        {'x-tag': ['a', 'b'], 'location': ['/x']}
        >>> normalize_headers([("Set-Cookie", "a=1"), ("set-cookie", "b=2")])
        {'set-cookie': ['a=1', 'b=2']}
    """
    if headers is None:
        return {}

    pairs: Iterable[tuple[str, str | Iterable[str]]]
    pairs = headers.items() if isinstance(headers, Mapping) else headers

    normalized: HeaderMap = {}
    for name, value in pairs:
        values = [value] if isinstance(value, str) else list(value)
        normalized.setdefault(name.lower(), []).extend(values)
    return normalized


def filter_response_headers(
    headers: Mapping[str, list[str]],
    additional_excluded: list[str] | None = None,
) -> HeaderMap:
    """Remove transport-managed headers from response headers.

    Args:
        headers: Normalized response headers
        additional_excluded: Additional header names to remove (case-insensitive)

    Returns:
        Filtered headers dictionary

    Example:
        >>> headers = {
        ...     "content-type": ["application/json"],
        ...     "content-length": ["12"],
        ...     "location": ["/api/orders/1"],
        ... }
        >>> filter_response_headers(headers)
        {'location': ['/api/orders/1']}
    """
    headers_to_remove = TRANSPORT_MANAGED_HEADERS.copy()

    if additional_excluded:
        headers_to_remove.update(h.lower() for h in additional_excluded)

    return {
        key: list(values)
        for key, values in headers.items()
        if key.lower() not in headers_to_remove
    }


def add_replay_headers(
    headers: Mapping[str, list[str]],
    idempotency_key: str,
    is_replay: bool = True,
    key_header_name: str = "Idempotency-Key",
) -> HeaderMap:
    """Add idempotency-specific headers to response headers.

    Args:
        headers: Existing response headers
        idempotency_key: The idempotency key used for this request
        is_replay: Whether this is a replayed response (default True)
        key_header_name: Header used to echo the key back

    Returns:
        A new header map with replay metadata added

    Example:
        >>> add_replay_headers({"location": ["/x"]}, "abc-123", key_header_name="IdempotencyKey")
        {'location': ['/x'], 'idempotent-replay': ['true'], 'idempotencykey': ['abc-123']}
    """
    result = {key: list(values) for key, values in headers.items()}

    result[REPLAY_HEADER.lower()] = ["true" if is_replay else "false"]
    result[key_header_name.lower()] = [idempotency_key]

    return result


def get_header_values(
    headers: Mapping[str, str | list[str]],
    header_name: str,
) -> list[str]:
    """Get all values of a header with case-insensitive lookup.

    Example:
        >>> get_header_values({"IdempotencyKey": "k1"}, "idempotencykey")
        ['k1']
        >>> get_header_values({}, "missing")
        []
    """
    header_name_lower = header_name.lower()

    values: list[str] = []
    for key, value in headers.items():
        if key.lower() == header_name_lower:
            values.extend([value] if isinstance(value, str) else value)

    return values
