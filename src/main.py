"""
PaySync - payment-lifecycle event ingestion and reconciliation.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import get_settings
from src.api.router import api_router
from src.database import dispose_engine
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("paysync")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("PaySync starting up (env=%s)", settings.app_env)

    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY not set - platform credentials cannot be decrypted. "
            "Generate a Fernet key for production."
        )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    if settings.webhook_worker_enabled:
        from src.workers.webhook_worker import run_webhook_worker
        worker_tasks.append(asyncio.create_task(run_webhook_worker()))
        logger.info("Webhook worker started")
    else:
        logger.info("Webhook worker disabled (WEBHOOK_WORKER_ENABLED=false)")

    if settings.sync_scheduler_enabled:
        from src.workers.sync_scheduler import run_sync_scheduler
        worker_tasks.append(asyncio.create_task(run_sync_scheduler()))
        logger.info("Sync scheduler started")
    else:
        logger.info("Sync scheduler disabled (SYNC_SCHEDULER_ENABLED=false)")

    yield

    # Graceful shutdown - give workers time to finish current work
    logger.info("PaySync shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        # Wait up to 10 seconds for workers to finish
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
    await dispose_engine()
    logger.info("PaySync shutdown complete - all %d workers stopped", len(worker_tasks))


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="PaySync",
        description="Payment-lifecycle event ingestion and reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_base_url],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID"],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
