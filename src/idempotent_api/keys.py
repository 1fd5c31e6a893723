"""Idempotency key extraction and validation.

The key is an opaque, caller-supplied string. No format is imposed (UUID
policies and the like belong to the caller); the engine only checks that
exactly one non-empty value is present when a key is required.
"""

from collections.abc import Mapping

from idempotent_api.config import IdempotencyOptions
from idempotent_api.exceptions import KeyValidationError
from idempotent_api.utils.headers import get_header_values


def extract_idempotency_key(
    headers: Mapping[str, str | list[str]],
    options: IdempotencyOptions,
) -> str | None:
    """Extract the idempotency key from request headers.

    Args:
        headers: Request headers; values may be strings or lists of strings.
        options: Engine options (header name, optional mode).

    Returns:
        The key, unmodified, or None when the header is absent or empty and
        the engine is configured as optional.

    Raises:
        KeyValidationError: If the key is required but absent or empty, or
            if the header carries more than one value.

    Examples:
        >>> extract_idempotency_key({"IdempotencyKey": "abc"}, IdempotencyOptions())
        'abc'
        >>> extract_idempotency_key({}, IdempotencyOptions(is_optional=True)) is None
        True
    """
    header_name = options.header_key_name
    values = get_header_values(headers, header_name)

    if len(values) > 1:
        raise KeyValidationError(
            f"The Idempotency header key value is not unique: "
            f"{len(values)} '{header_name}' headers were sent.",
            header_name=header_name,
        )

    key = values[0] if values else ""
    if not key.strip():
        if options.is_optional:
            return None
        raise KeyValidationError(
            f"The Idempotency header key '{header_name}' is not found.",
            header_name=header_name,
        )

    return key
