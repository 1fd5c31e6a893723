"""Framework-agnostic core middleware for idempotency handling.

This module provides the hook sequence that wraps a request handler. It is
framework-agnostic and can be wrapped by adapters for different web
frameworks.

The middleware:
1. Skips disabled engines, safe methods and methods not enabled
2. Extracts and validates the idempotency key
3. Buffers the body and computes the request fingerprint
4. Admits the request through a fresh IdempotencyCoordinator
5. Replays, rejects, or runs the handler and commits its result

Examples:
    Using the middleware directly::

        from idempotent_api.cache.memory import LockingMemoryCacheBackend
        from idempotent_api.config import IdempotencyOptions
        from idempotent_api.core.middleware import IdempotencyMiddleware, Request
        from idempotent_api.core.replay import HttpResult

        middleware = IdempotencyMiddleware(LockingMemoryCacheBackend(), IdempotencyOptions())

        async def handler(request):
            return HttpResult(status=201, body={"id": 1}, media_type="application/json")

        result = await middleware.process(request, handler)
"""

import asyncio
import math
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import BinaryIO

from idempotent_api.cache.access import AccessCache
from idempotent_api.cache.base import BasicCacheBackend
from idempotent_api.codec import ResponseCodec
from idempotent_api.config import IdempotencyOptions
from idempotent_api.core.coordinator import AdmitOutcome, IdempotencyCoordinator
from idempotent_api.core.replay import HttpResult, replay_response
from idempotent_api.exceptions import KeyValidationError, LockAcquisitionFailure
from idempotent_api.fingerprint import buffer_body, compute_fingerprint, read_raw_body
from idempotent_api.keys import extract_idempotency_key
from idempotent_api.models import ProblemDetails, ResultKind
from idempotent_api.observability.logging import get_logger, request_context
from idempotent_api.observability.metrics import IdempotencyMetrics, NullMetrics
from idempotent_api.utils.headers import HeaderMap, add_replay_headers, normalize_headers

logger = get_logger(__name__)

PROBLEM_JSON = "application/problem+json"
TEXT_PLAIN = "text/plain; charset=utf-8"

CONFLICT_PROBLEM_TYPE = "https://tools.ietf.org/html/rfc9110#section-15.5.10"

# Retry-After sent when locking is disabled and no timeout is known
DEFAULT_RETRY_AFTER_SECONDS = 1


class Request:
    """Abstract request representation.

    This is a simple container for request data that the middleware needs.
    Framework adapters should convert their framework-specific request
    objects into this format.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: URL path
        query_string: Query string without leading '?'
        headers: Request headers, lowercase names mapped to lists of values
        body: Request body as bytes, a binary stream, or None
    """

    def __init__(
        self,
        method: str,
        path: str,
        query_string: str = "",
        headers: Mapping[str, str | Iterable[str]] | Iterable[tuple[str, str]] | None = None,
        body: bytes | BinaryIO | None = None,
    ) -> None:
        self.method = method
        self.path = path
        self.query_string = query_string
        self.headers: HeaderMap = normalize_headers(headers)
        self.body = body


Handler = Callable[[Request], Awaitable[HttpResult]]


class IdempotencyMiddleware:
    """Framework-agnostic idempotency middleware.

    A new IdempotencyCoordinator is built for every request that engages the
    engine and is threaded through admit, commit and cancel.

    Attributes:
        cache: Capability-aware cache access
        options: Engine options
        metrics: Metrics sink
        codec: Codec for cache records
    """

    # Safe HTTP methods that don't need idempotency
    SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}

    def __init__(
        self,
        cache: AccessCache | BasicCacheBackend,
        options: IdempotencyOptions | None = None,
        metrics: IdempotencyMetrics | None = None,
        codec: ResponseCodec | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            cache: An AccessCache, or a backend whose capability is detected
            options: Engine options (defaults if not provided)
            metrics: Metrics sink (no-op if not provided)
            codec: Codec for cache records
        """
        self.cache = cache if isinstance(cache, AccessCache) else AccessCache.from_backend(cache)
        self.options = options or IdempotencyOptions()
        self.metrics = metrics or NullMetrics()
        self.codec = codec or ResponseCodec()

    def engages(self, method: str) -> bool:
        """Whether requests with this method go through the engine."""
        method = method.upper()
        return (
            self.options.enabled
            and method not in self.SAFE_METHODS
            and method in self.options.enabled_methods
        )

    async def process(self, request: Request, handler: Handler) -> HttpResult:
        """Process a request with idempotency handling.

        Args:
            request: The incoming request
            handler: Async function producing the real result

        Returns:
            The handler result, a replayed result, or a 4xx error result

        Raises:
            StorageError: If the cache fails while the request is admitted
            Exception: Whatever the handler raises, after the key is released
        """
        if not self.engages(request.method):
            return await handler(request)

        options = self.options
        try:
            key = extract_idempotency_key(request.headers, options)
        except KeyValidationError as e:
            logger.info("idempotency.key_invalid", header=e.header_name, error=e.message)
            return self._client_error(e.message)

        if key is None:
            # Optional mode without a key: the engine stays out of the way
            return await handler(request)

        fingerprint = compute_fingerprint(request.method, request.path, self._read_body(request))

        with request_context(key):
            return await self._coordinate(request, handler, key, fingerprint)

    async def _coordinate(
        self, request: Request, handler: Handler, key: str, fingerprint: str
    ) -> HttpResult:
        options = self.options
        coordinator = IdempotencyCoordinator(
            self.cache, options, codec=self.codec, metrics=self.metrics
        )
        try:
            admission = await coordinator.admit(key, fingerprint, request.method, request.path)
        except LockAcquisitionFailure as e:
            if options.lock_failure_policy == "proceed":
                logger.warning(
                    "idempotency.unprotected",
                    key=key,
                    operation=e.operation,
                )
                return await handler(request)
            return self._lock_conflict(e)

        if admission.outcome == AdmitOutcome.HIT:
            assert admission.response is not None
            return replay_response(admission.response, key, options.header_key_name)

        if admission.outcome == AdmitOutcome.MISMATCH:
            assert admission.error is not None
            return self._client_error(admission.error.message)

        try:
            result = await handler(request)
        except BaseException:
            await asyncio.shield(coordinator.cancel())
            raise

        await coordinator.commit(result)

        result.headers = add_replay_headers(
            result.headers,
            key,
            is_replay=False,
            key_header_name=options.header_key_name,
        )
        return result

    def _read_body(self, request: Request) -> bytes:
        """Read the body for fingerprinting, leaving it readable for the handler."""
        if request.body is None or isinstance(request.body, (bytes, bytearray, memoryview)):
            return bytes(request.body or b"")
        request.body = buffer_body(request.body)
        return read_raw_body(request.body)

    def _client_error(self, detail: str) -> HttpResult:
        if self.options.use_problem_details_for_errors:
            problem = ProblemDetails(detail=detail)
            return HttpResult(
                status=problem.status,
                body=problem.model_dump(),
                media_type=PROBLEM_JSON,
                kind=ResultKind.OBJECT,
            )
        return HttpResult(status=400, body=detail, media_type=TEXT_PLAIN, kind=ResultKind.CONTENT)

    def _lock_conflict(self, error: LockAcquisitionFailure) -> HttpResult:
        retry_after = (
            math.ceil(error.timeout_seconds)
            if error.timeout_seconds
            else DEFAULT_RETRY_AFTER_SECONDS
        )
        headers = {"retry-after": str(max(retry_after, 1))}
        detail = "A request with the same idempotency key is currently being processed."

        if self.options.use_problem_details_for_errors:
            problem = ProblemDetails(
                type=CONFLICT_PROBLEM_TYPE, title="Conflict", status=409, detail=detail
            )
            return HttpResult(
                status=409,
                headers=headers,
                body=problem.model_dump(),
                media_type=PROBLEM_JSON,
                kind=ResultKind.OBJECT,
            )
        return HttpResult(
            status=409,
            headers=headers,
            body=detail,
            media_type=TEXT_PLAIN,
            kind=ResultKind.CONTENT,
        )
