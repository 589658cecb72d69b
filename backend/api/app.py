"""
FastAPI application factory for the Live Crease API service.

Creates the app with:
- REST routes (live and completed cricket matches, admin job triggers)
- Middleware stack
- Health check endpoints
- Lifespan management: database, Redis, lifecycle runtime and, unless
  disabled, the embedded scheduler
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI
from sqlalchemy import text

from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SERVICE_INFO, start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.dependencies import get_runtime, init_dependencies, reset_dependencies
from api.middleware import setup_middleware
from api.routes.admin import router as admin_router
from api.routes.cricket import router as cricket_router
from lifecycle.runtime import build_runtime
from scheduler.service import SchedulerService, connect_with_retry

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without DB/Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Startup: connect DB and Redis, create tables, wire the runtime, start the scheduler.
    Shutdown: stop jobs, close the provider client, disconnect.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()
    SERVICE_INFO.info({"service": "api", "environment": settings.environment.value})

    db = DatabaseManager(settings)
    redis = RedisManager(settings)
    await connect_with_retry(db.connect, "Database")
    await db.create_schema()
    await connect_with_retry(redis.connect, "Redis")

    runtime = build_runtime(db, redis, settings)
    await runtime.start()
    scheduler = SchedulerService.from_runtime(runtime)
    init_dependencies(runtime, scheduler)
    if settings.run_scheduler_in_api:
        scheduler.start()

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        scheduler_embedded=settings.run_scheduler_in_api,
    )

    yield

    await scheduler.stop()
    await runtime.close()
    reset_dependencies()
    await db.disconnect()
    await redis.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without DB/Redis."""
    app = FastAPI(
        title="Live Crease API",
        description="Live and completed cricket match lifecycle",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)

    app.include_router(cricket_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> dict[str, Any]:
        """Readiness probe: checks downstream dependencies."""
        runtime = get_runtime()

        db_ok = False
        try:
            async with runtime.db.read_session() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except Exception as exc:
            logger.warning("readiness_database_failed", error=str(exc))

        redis_ok = False
        if runtime.redis is not None:
            try:
                await runtime.redis.client.ping()
                redis_ok = True
            except Exception as exc:
                logger.warning("readiness_redis_failed", error=str(exc))

        return {
            "status": "ok" if (db_ok and redis_ok) else "degraded",
            "database": db_ok,
            "redis": redis_ok,
        }

    return app


# For running with uvicorn directly
app = create_app()
