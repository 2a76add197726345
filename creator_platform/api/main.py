"""
Main FastAPI application.

Creator monetization API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from creator_platform.config import get_settings
from creator_platform.core.cache import TTLCache
from creator_platform.core.errors import PlatformError
from creator_platform.database.connection import close_db, init_db
from creator_platform.integrations.webhook_handler import WebhookHandler
from creator_platform.monitoring.health import HealthCheck
from creator_platform.monitoring.logging import (
    bind_request_context,
    clear_request_context,
    setup_logging,
)

from .routes import (
    account_router,
    admin_router,
    creator_router,
    media_router,
    monitoring_router,
    subscription_router,
    tip_router,
    webhook_router,
)

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Creates the tables, the listing cache and the webhook handler on startup
    and releases connections on shutdown.
    """
    logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)

    try:
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    app.state.cache = TTLCache(default_ttl=settings.cache_default_ttl_seconds)
    app.state.webhook_handler = WebhookHandler()
    app.state.health_check = HealthCheck(
        redis_client=app.state.webhook_handler._ensure_redis()
    )

    yield

    logger.info("application_shutdown")
    try:
        await app.state.webhook_handler.close()
        await close_db()
        logger.info("connections_closed")
    except Exception as e:
        logger.error("shutdown_error", error=str(e))


app = FastAPI(
    title="Creator Platform",
    description=(
        "Creator monetization backend: subscriptions, tips and pay-per-view unlocks "
        "over a double-entry style transaction ledger, with moderation and "
        "gateway webhook handling."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    An incoming X-Request-ID is kept; otherwise one is generated.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    bind_request_context(request_id, request.method, request.url.path)

    logger.info(
        "request_started",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration = time.time() - start_time
        logger.info(
            "request_completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_seconds=duration,
        )

        return response

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            "request_failed",
            request_id=request_id,
            error=str(e),
            duration_seconds=duration,
        )
        raise

    finally:
        clear_request_context()


@app.exception_handler(PlatformError)
async def platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    """Render domain errors with their HTTP status."""
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "request_rejected",
        error_code=exc.error_code,
        error=exc.message,
        status_code=exc.http_status,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
                "type": "InternalError",
            },
        },
    )


# Include routers
app.include_router(account_router)
app.include_router(creator_router)
app.include_router(subscription_router)
app.include_router(tip_router)
app.include_router(media_router)
app.include_router(admin_router)
app.include_router(webhook_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": "creator-platform",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "creator_platform.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
