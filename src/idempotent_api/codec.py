"""Compact, round-trippable encoding of cache records.

Values are first converted into a tagged tree where every node is a
two-element JSON array ``[tag, payload]``. Tags keep types that plain JSON
would lose: bytes, date/time values, decimals, UUIDs, non-string map keys,
and the difference between ints and floats. The tree is rendered as compact
JSON and gzip-compressed (with a fixed mtime so identical inputs produce
identical bytes).

Supported values:
    None, bool, int, float, str, bytes, datetime, date, time, Decimal, UUID,
    Enum members (stored by value), lists and tuples (decoded as lists),
    dicts (insertion order preserved), and pydantic models (stored as their
    field dict).

Examples:
    Round-tripping a record::

        codec = ResponseCodec()
        data = codec.encode_record(record)
        assert codec.decode_record(data) == record
"""

import base64
import gzip
import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from idempotent_api.exceptions import SerializationFailure
from idempotent_api.models import CacheRecord

TAG_NULL = "n"
TAG_BOOL = "b"
TAG_INT = "i"
TAG_FLOAT = "f"
TAG_STR = "s"
TAG_BYTES = "x"
TAG_DATETIME = "dt"
TAG_DATE = "d"
TAG_TIME = "t"
TAG_DECIMAL = "dec"
TAG_UUID = "u"
TAG_LIST = "l"
TAG_MAP = "m"

ModelT = TypeVar("ModelT", bound=BaseModel)


def encode_value(value: Any) -> list[Any]:
    """Convert a Python value into a tagged JSON-compatible tree.

    Raises:
        TypeError: If the value (or a nested value) has an unsupported type.

    Example:
        >>> encode_value({"id": 1, "tags": ["a"]})
        ['m', [[['s', 'id'], ['i', 1]], [['s', 'tags'], ['l', [['s', 'a']]]]]]
    """
    if value is None:
        return [TAG_NULL, None]
    if isinstance(value, Enum):
        return encode_value(value.value)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return [TAG_BOOL, value]
    if isinstance(value, int):
        return [TAG_INT, int(value)]
    if isinstance(value, float):
        return [TAG_FLOAT, value]
    if isinstance(value, str):
        return [TAG_STR, str(value)]
    if isinstance(value, (bytes, bytearray, memoryview)):
        return [TAG_BYTES, base64.b64encode(bytes(value)).decode("ascii")]
    # datetime before date: datetime is a date subclass
    if isinstance(value, datetime):
        return [TAG_DATETIME, value.isoformat()]
    if isinstance(value, date):
        return [TAG_DATE, value.isoformat()]
    if isinstance(value, time):
        return [TAG_TIME, value.isoformat()]
    if isinstance(value, Decimal):
        return [TAG_DECIMAL, str(value)]
    if isinstance(value, UUID):
        return [TAG_UUID, str(value)]
    if isinstance(value, (list, tuple)):
        return [TAG_LIST, [encode_value(item) for item in value]]
    if isinstance(value, dict):
        return [TAG_MAP, [[encode_value(k), encode_value(v)] for k, v in value.items()]]
    if isinstance(value, BaseModel):
        return encode_value(value.model_dump(mode="python"))

    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def decode_value(tree: Any) -> Any:
    """Rebuild a Python value from a tagged tree produced by encode_value.

    Raises:
        ValueError: If the tree is malformed or carries an unknown tag.
    """
    if not isinstance(tree, list) or len(tree) != 2:
        raise ValueError(f"Malformed encoded node: {tree!r}")

    tag, payload = tree
    if tag == TAG_NULL:
        return None
    if tag in (TAG_BOOL, TAG_STR):
        return payload
    if tag == TAG_INT:
        return int(payload)
    if tag == TAG_FLOAT:
        return float(payload)
    if tag == TAG_BYTES:
        return base64.b64decode(payload, validate=True)
    if tag == TAG_DATETIME:
        return datetime.fromisoformat(payload)
    if tag == TAG_DATE:
        return date.fromisoformat(payload)
    if tag == TAG_TIME:
        return time.fromisoformat(payload)
    if tag == TAG_DECIMAL:
        return Decimal(payload)
    if tag == TAG_UUID:
        return UUID(payload)
    if tag == TAG_LIST:
        return [decode_value(item) for item in payload]
    if tag == TAG_MAP:
        return {decode_value(k): decode_value(v) for k, v in payload}

    raise ValueError(f"Unknown tag in encoded node: {tag!r}")


class ResponseCodec:
    """Serializes cache records, captured responses included, into compressed bytes.

    Attributes:
        compresslevel: gzip compression level (0-9).
    """

    def __init__(self, compresslevel: int = 6) -> None:
        self.compresslevel = compresslevel

    def encode_record(self, record: CacheRecord) -> bytes:
        """Encode a cache record.

        Raises:
            SerializationFailure: If any part of the record cannot be encoded.
        """
        return self._pack(record)

    def decode_record(self, data: bytes) -> CacheRecord:
        """Decode bytes produced by encode_record.

        Raises:
            SerializationFailure: If the bytes are not a valid encoded record.
        """
        return self._validate(CacheRecord, self._unpack(data))

    def _pack(self, value: Any) -> bytes:
        try:
            text = json.dumps(encode_value(value), ensure_ascii=False, separators=(",", ":"))
            raw = text.encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationFailure(
                f"Failed to encode cache payload: {e}", operation="encode", cause=e
            ) from e
        return gzip.compress(raw, compresslevel=self.compresslevel, mtime=0)

    def _unpack(self, data: bytes) -> Any:
        try:
            text = gzip.decompress(data).decode("utf-8")
            return decode_value(json.loads(text))
        except (OSError, EOFError, UnicodeDecodeError, ValueError, TypeError) as e:
            raise SerializationFailure(
                f"Failed to decode cache payload: {e}", operation="decode", cause=e
            ) from e

    @staticmethod
    def _validate(model: type[ModelT], value: Any) -> ModelT:
        try:
            return model.model_validate(value)
        except ValidationError as e:
            raise SerializationFailure(
                f"Decoded payload is not a valid {model.__name__}: {e}", operation="decode", cause=e
            ) from e
