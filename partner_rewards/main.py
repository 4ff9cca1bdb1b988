from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from partner_rewards.config import Settings, get_settings
from partner_rewards.api.v1.router import api_router
from partner_rewards.core.exceptions import RewardsError
from partner_rewards.database import create_engine, create_session_factory, init_db, utcnow
from partner_rewards.jobs.recompute_worker import RecomputeWorker
from partner_rewards.jobs.scheduler import build_scheduler, start_scheduler, shutdown_scheduler, get_job_status
from partner_rewards.services.renewal_service import RenewalService, RedisLease, create_lease_backend
from partner_rewards.services.rewards_config_service import RewardsConfigCache


logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP responses."""

    @app.exception_handler(RewardsError)
    async def rewards_error_handler(request: Request, exc: RewardsError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "type": type(exc).__name__,
                "details": exc.details,
                "path": str(request.url.path),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "type": type(exc).__name__,
                "details": {},
                "path": str(request.url.path),
            },
        )


def create_app(settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    """
    Build the application.

    Storage, the config cache, the renewal lease, the recompute worker and
    the scheduler are created in the lifespan and carried on app.state.
    Pass an engine to share one that the caller owns (tests).
    """
    settings = settings or get_settings()
    owns_engine = engine is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        configure_logging(settings)
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        db_engine = engine or create_engine(settings)
        session_factory = create_session_factory(db_engine)
        if settings.DATABASE_URL.startswith("sqlite"):
            await init_db(db_engine)

        config_cache = RewardsConfigCache(session_factory, settings.REWARDS_CONFIG_REFRESH_SECONDS)
        try:
            config = await config_cache.refresh()
            logger.info(f"Rewards config v{config.version} loaded")
        except Exception as e:
            # The cache retries on first use
            logger.error(f"Initial rewards config load failed: {e}")

        lease = create_lease_backend(settings)
        renewal_service = RenewalService(session_factory, config_cache, lease, settings)
        worker = RecomputeWorker(session_factory, config_cache, settings)

        app.state.engine = db_engine
        app.state.session_factory = session_factory
        app.state.config_cache = config_cache
        app.state.lease = lease
        app.state.renewal_service = renewal_service
        app.state.recompute_worker = worker
        app.state.scheduler = None

        if settings.SCHEDULER_ENABLED:
            scheduler = build_scheduler(settings)
            start_scheduler(scheduler, settings, renewal_service, worker, config_cache)
            app.state.scheduler = scheduler

        yield

        # Shutdown
        if app.state.scheduler is not None:
            shutdown_scheduler(app.state.scheduler)
        if isinstance(lease, RedisLease):
            await lease.close()
        if owns_engine:
            await db_engine.dispose()
        logger.info("Shutting down...")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Partner rating, achievements and tier progression",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint with database validation."""
        health_status = {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": utcnow().isoformat(),
            "checks": {
                "database": "unknown"
            },
            "jobs": [],
        }

        # Check database connectivity
        try:
            async with request.app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
                health_status["checks"]["database"] = "connected"
        except Exception as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = f"error: {str(e)}"

        scheduler = getattr(request.app.state, "scheduler", None)
        if scheduler is not None:
            health_status["jobs"] = get_job_status(scheduler)

        # Return 503 if unhealthy
        if health_status["status"] == "unhealthy":
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    return app


app = create_app()
