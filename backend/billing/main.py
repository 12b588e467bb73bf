"""FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.billing.api.auth import register_exception_handlers
from backend.billing.api.routes.health import router as health_router
from backend.billing.api.routes.identity import router as identity_router
from backend.billing.api.routes.metrics import router as metrics_router
from backend.billing.transactions.executors import close_transaction_engine


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_transaction_engine()


app = FastAPI(title="Billing Transaction Core", version="0.1.0", lifespan=lifespan)

register_exception_handlers(app)

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(identity_router, tags=["identity"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Billing Transaction Core", "version": "0.1.0"}
