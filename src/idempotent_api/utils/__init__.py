"""Utility modules for the idempotency engine."""

from .headers import (
    TRANSPORT_MANAGED_HEADERS,
    add_replay_headers,
    filter_response_headers,
    get_header_values,
    normalize_headers,
)

__all__ = [
    "filter_response_headers",
    "add_replay_headers",
    "get_header_values",
    "normalize_headers",
    "TRANSPORT_MANAGED_HEADERS",
]
