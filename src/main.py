"""
ZoneGuard AI Resilience Service - Main Application

FastAPI application guarding the meal analysis AI dependency with:
- API versioning (/api/v1/)
- Image integrity validation and size-budget compression
- Dual-tier admission control (Redis with in-process fallback)
- AI health monitoring and scoring
- Background recovery of incomplete ingredient zoning
- Structured logging with structlog, Prometheus metrics
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from redis.exceptions import RedisError

from src.core.config import settings
from src.core.database import create_db_and_tables, ping_database
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.core.scheduler import PeriodicTask
from src.api.v1 import api_v1_router
from src.pipeline.container import build_services


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


def _periodic_tasks(services) -> list:
    tasks = [
        PeriodicTask(
            "monitor-cleanup",
            services.monitor.cleanup,
            settings.MONITOR_CLEANUP_INTERVAL_SECONDS
        ),
        PeriodicTask(
            "rate-limit-cleanup",
            services.admission.cleanup,
            settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS
        ),
    ]
    if settings.RECOVERY_RUNNER == "inprocess":
        tasks.append(PeriodicTask(
            "background-zoning",
            services.recovery.run_tick,
            settings.BACKGROUND_PROCESS_INTERVAL_SECONDS
        ))
    return tasks


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()
    app.state.started_at = startup_start

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        recovery_runner=settings.RECOVERY_RUNNER
    )

    await create_db_and_tables()
    logger.info("database_initialized")

    app.state.redis = None
    if settings.RATE_LIMIT_REDIS_ENABLED:
        app.state.redis = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
        logger.info("redis_configured", url=settings.REDIS_URL)

    # Tests may install their own container before startup
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(redis_client=app.state.redis)

    if not app.state.services.client.configured:
        logger.warning("inference_not_configured", setting="OPENROUTER_API_KEY")

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    app.state.periodic_tasks = _periodic_tasks(app.state.services)
    for task in app.state.periodic_tasks:
        task.start()

    startup_time = time.time() - startup_start
    logger.info("application_ready", startup_time_seconds=startup_time)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    for task in app.state.periodic_tasks:
        await task.stop()
    await app.state.services.aclose()
    if app.state.redis is not None:
        await app.state.redis.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Resilience layer between the meal tracking app and its AI inference provider.

    - **Integrity Validation**: MIME allow-list, extension and magic-number checks
    - **Compression**: Oversized photos re-encoded under the inference budget
    - **Admission Control**: Per-client limits for vision and zoning calls
    - **AI Health**: Success rate, latency and error scoring per AI service
    - **Background Recovery**: Exponential-backoff re-zoning, parked after max retries

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

cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps food ids out of the label values
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

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
        "health": "/api/v1/monitoring/ai-health",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Liveness check."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies dependencies are available.

    Redis is optional: when it is down the limiter falls back to in-process
    counters, so it is reported but does not fail readiness.
    """
    checks = {
        "database": False,
        "redis": None,
        "inference_configured": False,
    }

    try:
        checks["database"] = await ping_database()
    except Exception as e:
        logger.warning("readiness_database_failed", error=str(e))

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        try:
            checks["redis"] = bool(await redis_client.ping())
        except (RedisError, OSError) as e:
            checks["redis"] = False
            logger.warning("readiness_redis_failed", error=str(e))

    services = getattr(request.app.state, "services", None)
    checks["inference_configured"] = bool(services and services.client.configured)

    is_ready = checks["database"] and checks["inference_configured"]

    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "ready": is_ready,
            "checks": checks,
            "rate_limit_backend": "redis" if checks["redis"] else "memory",
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
