"""Framework adapters for the idempotency engine.

- asgi.py: Starlette middleware for FastAPI and Starlette applications

Adapters convert between framework-specific request/response objects and
the engine's Request and HttpResult.
"""

from idempotent_api.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
