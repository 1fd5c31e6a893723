"""Structured logging for the idempotency engine.

Every decision the coordinator takes is logged as a structlog event with a
dotted name (``idempotency.miss``, ``idempotency.hit``, ...). The key,
method and path are bound to each event; request bodies are never logged.

While a request is inside the engine, ``request_context`` binds its key to
structlog's context variables, so log lines emitted by the application's
own handler carry the key too.

Examples:
    Configure logging once at startup::

        from idempotent_api.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Output (JSON)::

        {
            "key": "payment-123",
            "method": "POST",
            "path": "/api/payments",
            "event": "idempotency.hit",
            "level": "info",
            "timestamp": "2024-01-01T00:00:00.000000Z"
        }
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

KEY_CONTEXT_VAR = "idempotency_key"


def _resolve_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structlog for the engine and the host application.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines if True, colored console output otherwise

    Raises:
        ValueError: If the level name is unknown
    """
    numeric_level = _resolve_level(level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)


@contextmanager
def request_context(key: str) -> Iterator[None]:
    """Bind the idempotency key to every log event emitted inside the block.

    Examples:
        >>> with request_context("payment-123"):
        ...     structlog.contextvars.get_contextvars()[KEY_CONTEXT_VAR]
        'payment-123'
    """
    with structlog.contextvars.bound_contextvars(**{KEY_CONTEXT_VAR: key}):
        yield
