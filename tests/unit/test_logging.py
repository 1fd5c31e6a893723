"""Unit tests for logging configuration and request context binding."""

import pytest
import structlog

from idempotent_api.cache.memory import MemoryCacheBackend
from idempotent_api.config import IdempotencyOptions
from idempotent_api.core.middleware import IdempotencyMiddleware, Request
from idempotent_api.core.replay import HttpResult
from idempotent_api.observability.logging import (
    KEY_CONTEXT_VAR,
    configure_logging,
    get_logger,
    request_context,
)


class TestConfigureLogging:
    """Tests for configure_logging()."""

    @pytest.mark.parametrize("json_output", [True, False])
    def test_configures_structlog(self, json_output):
        configure_logging(level="debug", json_output=json_output)

        assert structlog.is_configured()
        get_logger(__name__).debug("idempotency.test", key="abc")

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging(level="LOUD")


class TestRequestContext:
    """Tests for binding the key to handler log events."""

    def test_binds_and_restores(self):
        with request_context("k-1"):
            assert structlog.contextvars.get_contextvars()[KEY_CONTEXT_VAR] == "k-1"

        assert KEY_CONTEXT_VAR not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_handler_runs_inside_context(self):
        seen: list[str | None] = []

        async def handler(request: Request) -> HttpResult:
            seen.append(structlog.contextvars.get_contextvars().get(KEY_CONTEXT_VAR))
            return HttpResult(status=201)

        middleware = IdempotencyMiddleware(MemoryCacheBackend(), IdempotencyOptions())
        await middleware.process(
            Request("POST", "/orders", headers={"IdempotencyKey": "k-2"}, body=b""), handler
        )

        assert seen == ["k-2"]
