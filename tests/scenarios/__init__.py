"""End-to-end scenarios for the idempotency engine.

Each module drives a FastAPI application through ASGIIdempotencyMiddleware
and checks one aspect of idempotent request handling.
"""
