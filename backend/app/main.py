"""
FastAPI Application Entry Point.

This is the main application file for the Wallet Settlement Core.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.redis_client import ping_redis
from backend.app.db.session import engine, Base, AsyncSessionLocal
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.services.notifier import run_outbox_worker

# Import models to ensure they are registered with Base
from backend.app.models.user import User
from backend.app.models.company import Company
from backend.app.models.transaction import Transaction
from backend.app.models.invoice import Invoice
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.notification import Notification
from backend.app.models.outbox import OutboxEvent
from backend.app.models.dlq import DeadLetterQueue
from backend.app.models.audit_log import AuditLog

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the outbox worker when a poll interval is configured.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    worker = None
    if settings.outbox_poll_interval_seconds > 0:
        worker = asyncio.create_task(
            run_outbox_worker(AsyncSessionLocal, settings.outbox_poll_interval_seconds)
        )
    yield
    if worker is not None:
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Shared wallet ledger and settlement core for PayFlow, InvoiceFlow and StockFlow",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": await ping_redis(),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Wallet Settlement Core API",
        "docs": "/docs",
        "health": "/health",
    }
