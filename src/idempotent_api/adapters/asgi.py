"""ASGI middleware adapter for FastAPI and Starlette applications.

This module wraps the core idempotency middleware in a Starlette
``BaseHTTPMiddleware`` so it can be added to any ASGI application.

The adapter:
1. Converts the Starlette request to the engine's Request
2. Classifies the downstream response into a ResultKind
3. Captures JSON bodies structurally and re-renders them on replay
4. Passes excluded kinds (streams, file downloads) through untouched

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from idempotent_api.adapters.asgi import ASGIIdempotencyMiddleware
        from idempotent_api.cache.memory import LockingMemoryCacheBackend
        from idempotent_api.config import IdempotencyOptions

        app = FastAPI()

        app.add_middleware(
            ASGIIdempotencyMiddleware,
            cache=LockingMemoryCacheBackend(),
            options=IdempotencyOptions(header_key_name="Idempotency-Key"),
        )

        @app.post("/api/payments", status_code=201)
        async def create_payment(data: PaymentData):
            # This endpoint is now idempotent
            return {"status": "success"}

    Starlette integration::

        from starlette.applications import Starlette
        from starlette.middleware import Middleware

        middleware = [
            Middleware(
                ASGIIdempotencyMiddleware,
                cache=LockingMemoryCacheBackend(),
            )
        ]

        app = Starlette(middleware=middleware)
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response

from idempotent_api.cache.access import AccessCache
from idempotent_api.cache.base import BasicCacheBackend
from idempotent_api.config import IdempotencyOptions
from idempotent_api.core.middleware import IdempotencyMiddleware, Request
from idempotent_api.core.replay import HttpResult
from idempotent_api.models import ResultKind
from idempotent_api.observability.metrics import IdempotencyMetrics
from idempotent_api.utils.headers import TRANSPORT_MANAGED_HEADERS


def is_json_media_type(media_type: str | None) -> bool:
    """Whether a Content-Type value denotes JSON (application/json or +json).

    Examples:
        >>> is_json_media_type("application/json")
        True
        >>> is_json_media_type("application/problem+json; charset=utf-8")
        True
        >>> is_json_media_type("text/plain")
        False
    """
    if not media_type:
        return False
    essence = media_type.split(";", 1)[0].strip().lower()
    return essence == "application/json" or essence.endswith("+json")


def classify_response(response: Response) -> ResultKind:
    """Determine the result kind from downstream response headers.

    The body is not consumed. File downloads are recognized by
    Content-Disposition, bodiless statuses by their code, and streams by
    the absence of Content-Length.
    """
    if "content-disposition" in response.headers:
        return ResultKind.FILE
    if response.status_code < 200 or response.status_code in (204, 304):
        return ResultKind.STATUS
    if "content-length" not in response.headers:
        return ResultKind.STREAM
    if response.headers.get("content-length") == "0":
        return ResultKind.STATUS
    if is_json_media_type(response.headers.get("content-type")):
        return ResultKind.OBJECT
    return ResultKind.CONTENT


def render_body(result: HttpResult) -> bytes:
    """Render a result body to bytes for the wire."""
    body = result.body
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    # Same rendering as Starlette's JSONResponse
    return json.dumps(
        body,
        ensure_ascii=False,
        allow_nan=False,
        indent=None,
        separators=(",", ":"),
    ).encode("utf-8")


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for idempotency handling.

    Attributes:
        options: Engine options
        middleware: Core middleware instance
    """

    def __init__(
        self,
        app: Any,
        cache: AccessCache | BasicCacheBackend,
        options: IdempotencyOptions | None = None,
        metrics: IdempotencyMetrics | None = None,
    ) -> None:
        """Initialize the ASGI middleware.

        Args:
            app: The ASGI application
            cache: An AccessCache, or a cache backend
            options: Engine options (uses defaults if not provided)
            metrics: Metrics sink (no-op if not provided)
        """
        super().__init__(app)
        self.options = options or IdempotencyOptions()
        self.middleware = IdempotencyMiddleware(cache, self.options, metrics=metrics)

    async def dispatch(
        self,
        request: StarletteRequest,
        call_next: Callable[[StarletteRequest], Awaitable[Response]],
    ) -> Response:
        """Process an ASGI request with idempotency handling."""
        if not self.middleware.engages(request.method):
            return await call_next(request)

        internal_request = await self._convert_request(request)

        async def handler(_req: Request) -> HttpResult:
            response = await call_next(request)
            return await self._capture(response)

        result = await self.middleware.process(internal_request, handler)
        return self._convert_response(result)

    async def _convert_request(self, request: StarletteRequest) -> Request:
        body = await request.body()
        return Request(
            method=request.method,
            path=request.url.path,
            query_string=request.url.query or "",
            headers=request.headers.items(),
            body=body,
        )

    async def _capture(self, response: Response) -> HttpResult:
        """Convert the downstream response, consuming its body unless passed through."""
        kind = classify_response(response)
        media_type = response.headers.get("content-type")

        if kind in self.options.excluded_result_kinds:
            return HttpResult(status=response.status_code, kind=kind, native=response)

        body = b""
        if hasattr(response, "body_iterator"):
            async for chunk in response.body_iterator:
                body += chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
        else:
            body = bytes(response.body)

        value: Any = body
        if kind == ResultKind.OBJECT:
            try:
                value = json.loads(body)
            except ValueError:
                kind = ResultKind.CONTENT
        elif kind == ResultKind.STATUS:
            value = None

        return HttpResult(
            status=response.status_code,
            headers=response.headers.items(),
            body=value,
            media_type=media_type,
            kind=kind,
        )

    def _convert_response(self, result: HttpResult) -> Response:
        if result.native is not None:
            response: Response = result.native
            for name, values in result.headers.items():
                response.headers[name] = values[-1]
            return response

        response = Response(
            content=render_body(result),
            status_code=result.status,
            media_type=result.media_type,
        )
        for name, values in result.headers.items():
            if name in TRANSPORT_MANAGED_HEADERS:
                continue
            for value in values:
                response.headers.append(name, value)
        return response
