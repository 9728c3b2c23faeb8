"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from payhook.core.config import settings
from payhook.core.logging import setup_logging
from payhook.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy
from payhook.db.redis import ping as redis_ping
from payhook.db.session import engine, init_db
from payhook.services.providers.registry import build_provider
from payhook.services.reconciliation import WebhookReconciler

from payhook.api import admin, monitoring, webhooks

setup_logging()
logger = logging.getLogger(__name__)


def build_reconcilers() -> dict:
    """One reconciler for the configured provider, keyed by provider name"""
    provider = build_provider(settings.PAYMENT_PROVIDER, settings)
    reconciler = WebhookReconciler(
        provider,
        fixed_fee_cents=settings.FIXED_FEE_CENTS,
        creator_share=settings.CREATOR_SHARE,
    )
    return {provider.name: reconciler}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        instrument_sqlalchemy(engine)
        logger.info(f"OpenTelemetry initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    app.state.reconcilers = build_reconcilers()
    logger.info(f"Payment provider: {settings.PAYMENT_PROVIDER}")

    worker = None
    if settings.RECEIPT_WORKER_ENABLED:
        if redis_ping():
            from payhook.tasks.receipt_worker import receipt_worker_task
            worker = asyncio.create_task(receipt_worker_task())
            logger.info("Receipt worker started")
        else:
            logger.warning("Redis unavailable - receipt worker not started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if worker is not None:
        worker.cancel()


# Create FastAPI app
app = FastAPI(
    title="payhook",
    description="Payment webhook reconciliation service",
    version="1.0.0",
    lifespan=lifespan
)

instrument_fastapi(app)

# Include routers
app.include_router(webhooks.router)
app.include_router(admin.router)
app.include_router(monitoring.router)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"ok": False, "code": "internal_error", "message": "Internal server error"}
    )


if __name__ == "__main__":
    # Use reload=True in development for hot reload
    # Must pass app as import string for reload to work
    reload = settings.ENVIRONMENT == "development"

    config = {
        "host": "0.0.0.0",
        "port": 8000,
        "timeout_graceful_shutdown": 30,
    }

    if reload:
        config["reload"] = True
        uvicorn.run("payhook.main:app", **config)
    else:
        uvicorn.run(app, **config)
