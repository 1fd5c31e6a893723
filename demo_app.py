"""Demo FastAPI application with the idempotency engine.

Run with: python demo_app.py
Then try:
    curl -X POST localhost:8000/api/payments -H 'IdempotencyKey: k1' \\
        -H 'content-type: application/json' -d '{"amount": 100}'
and repeat the same command: the second response is replayed.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from itertools import count

import uvicorn
from fastapi import FastAPI, HTTPException
from prometheus_client import make_asgi_app
from pydantic import BaseModel

from idempotent_api.adapters.asgi import ASGIIdempotencyMiddleware
from idempotent_api.cache.memory import LockingMemoryCacheBackend
from idempotent_api.config import IdempotencyOptions
from idempotent_api.core.cleanup import start_cleanup_task, stop_cleanup_task
from idempotent_api.observability.logging import configure_logging
from idempotent_api.observability.metrics import PrometheusMetrics

configure_logging(level="INFO", json_output=False)

backend = LockingMemoryCacheBackend()
options = IdempotencyOptions(
    expires_in_seconds=3600,
    lock_timeout_seconds=10,
    use_problem_details_for_errors=True,
)

_ids = count(1)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = await start_cleanup_task(backend, interval_seconds=60)
    yield
    await stop_cleanup_task(task)


app = FastAPI(
    title="Idempotency Engine Demo",
    description="Demo API showing idempotent request handling",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    ASGIIdempotencyMiddleware,
    cache=backend,
    options=options,
    metrics=PrometheusMetrics(),
)
app.mount("/metrics", make_asgi_app())


class PaymentRequest(BaseModel):
    amount: int
    currency: str = "USD"
    description: str | None = None


class PaymentResponse(BaseModel):
    id: str
    status: str
    amount: int
    currency: str
    created_at: str


class OrderRequest(BaseModel):
    product_id: str
    quantity: int


@app.get("/api/status")
async def get_status():
    """Safe methods bypass the engine."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@app.post("/api/payments", response_model=PaymentResponse, status_code=201)
async def create_payment(payment: PaymentRequest):
    """Create a payment. Retries with the same key replay the first response."""
    await asyncio.sleep(0.1)
    if payment.amount <= 0:
        # 4xx results are not cached, so the client can fix and retry
        raise HTTPException(status_code=422, detail="amount must be positive")

    return PaymentResponse(
        id=f"pay_{next(_ids)}",
        status="success",
        amount=payment.amount,
        currency=payment.currency,
        created_at=datetime.now(UTC).isoformat(),
    )


@app.put("/api/orders/{order_id}")
async def update_order(order_id: str, order: OrderRequest):
    await asyncio.sleep(0.1)
    return {
        "order_id": order_id,
        "status": "updated",
        "product_id": order.product_id,
        "quantity": order.quantity,
        "updated_at": datetime.now(UTC).isoformat(),
    }


@app.delete("/api/orders/{order_id}", status_code=204)
async def cancel_order(order_id: str):
    await asyncio.sleep(0.1)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
