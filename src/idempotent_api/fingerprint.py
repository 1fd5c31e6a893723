"""Request fingerprinting for idempotency.

The fingerprint identifies the payload a key was first used with, so a key
reused for a different request can be rejected. It is the SHA-256 of a
canonical JSON array of the HTTP method, the URL path and the raw body
decoded as text. Absent and empty bodies both encode as the empty string.

Bodies are read without consuming them: non-seekable streams are first
buffered into a seekable spool, and the position is reset after reading so
the real handler still sees the whole body.
"""

import hashlib
import json
import shutil
import tempfile
from typing import BinaryIO

# Bodies up to this size stay in memory while buffered
SPOOL_MAX_BYTES = 1024 * 1024


def compute_fingerprint(
    method: str,
    path: str,
    body: bytes | str | None,
) -> str:
    """Compute a deterministic fingerprint for a request.

    Args:
        method: HTTP method (e.g., "POST", "PUT"); case-insensitive.
        path: URL path component, used as-is.
        body: Raw request body. None is treated as empty.

    Returns:
        Hexadecimal SHA-256 hash string (64 characters)

    Examples:
        >>> fp = compute_fingerprint("POST", "/api/orders", b'{"x":1}')
        >>> len(fp)
        64
        >>> fp == compute_fingerprint("post", "/api/orders", '{"x":1}')
        True
    """
    if body is None:
        body_text = ""
    elif isinstance(body, str):
        body_text = body
    else:
        # surrogateescape keeps distinct non-UTF-8 bodies distinct
        body_text = bytes(body).decode("utf-8", errors="surrogateescape")

    canonical = json.dumps(
        [method.upper(), path, body_text],
        ensure_ascii=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("ascii")).hexdigest()


def buffer_body(stream: BinaryIO | None) -> BinaryIO | None:
    """Return a seekable stream with the same content as ``stream``.

    Seekable streams are returned unchanged. Non-seekable streams (sockets,
    pipes, generators wrapped in raw IO) are copied from their current
    position into a spooled temporary file, which stays in memory for
    small bodies.

    Args:
        stream: The request body stream, or None.

    Returns:
        A seekable stream positioned at 0, or None.
    """
    if stream is None:
        return None

    if stream.seekable():
        return stream

    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES)
    shutil.copyfileobj(stream, spool)
    spool.seek(0)
    return spool  # type: ignore[return-value]


def read_raw_body(stream: BinaryIO | None) -> bytes:
    """Read a whole seekable body stream and rewind it.

    The read is non-destructive: the stream is positioned at 0 both before
    and after reading, whatever its position was before.

    Args:
        stream: A seekable stream (see ``buffer_body``), or None.

    Returns:
        The full body as bytes; b"" for None.

    Raises:
        ValueError: If the stream is not seekable.
    """
    if stream is None:
        return b""

    if not stream.seekable():
        raise ValueError("Body stream must be seekable; wrap it with buffer_body() first")

    stream.seek(0)
    data = stream.read()
    stream.seek(0)
    return data if data is not None else b""
