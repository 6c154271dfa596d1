"""
Watermark Bot - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Telegram webhook intake
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import text

from src.core.config import settings
from src.core.database import create_db_and_tables, engine
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers, GlobalExceptionMiddleware
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.api.v1 import api_v1_router
from src.pipeline.compositor import get_compositor


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    # Initialize database
    await run_in_threadpool(create_db_and_tables)
    logger.info("database_initialized")

    # Initialize Redis connection
    app.state.redis = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True
    )
    logger.info("redis_connected", url=settings.REDIS_URL)

    ffmpeg_ok, ffmpeg_info = await run_in_threadpool(get_compositor().is_available)
    if ffmpeg_ok:
        logger.info("ffmpeg_available", version=ffmpeg_info)
    else:
        logger.warning("ffmpeg_unavailable", error=ffmpeg_info)

    # Set Prometheus app info
    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    startup_time = time.time() - startup_start
    logger.info("application_ready", startup_time_seconds=startup_time)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await app.state.redis.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Telegram bot that stamps a per-chat PNG watermark onto photos and videos.

    - **Webhook**: Bot API updates are routed to the worker pool
    - **Compositing**: ffmpeg overlay, centred and semi-transparent
    - **Usage**: per-chat counter of delivered media
    - **Observability**: Structured logging, Prometheus metrics

    ## API Versioning

    All endpoints are versioned under `/api/v1/`
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

app.add_middleware(GlobalExceptionMiddleware)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Record metrics
    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    # Add timing header
    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


def _check_database() -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies dependencies are available."""
    checks = {
        "redis": False,
        "database": False,
        "ffmpeg": False
    }

    # Check Redis
    try:
        await request.app.state.redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("readiness_check_failed", check="redis", error=str(e))

    # Check database
    try:
        checks["database"] = await run_in_threadpool(_check_database)
    except Exception as e:
        logger.warning("readiness_check_failed", check="database", error=str(e))

    # Check ffmpeg
    checks["ffmpeg"], ffmpeg_info = await run_in_threadpool(get_compositor().is_available)

    all_ready = all(checks.values())

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "ready": all_ready,
            "checks": checks,
            "ffmpeg": ffmpeg_info
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
