"""
Main FastAPI application.

Serves the BEA, HUD, BLS and EIA lookups through one aggregator with a
shared cache, plus cache maintenance endpoints.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from costwise.core.aggregator import Aggregator
from costwise.core.cache_store import CacheStore
from costwise.core.config import get_settings
from costwise.core.database import create_tables, get_engine, get_session_factory
from costwise.core.location_resolver import LocationResolver
from costwise.core.rate_limiter import get_rate_limiter
from costwise.core.scheduler_service import MaintenanceScheduler
from costwise.api.v1 import bea, bls, cache, eia, hud, location

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "CostWise Source Aggregation Service"
VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup creates tables, wires the aggregator and starts the maintenance
    scheduler; shutdown stops the scheduler and closes upstream clients.
    """
    settings = get_settings()
    logger.info(f"Starting {SERVICE_NAME}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(
        f"Rate limit: {settings.rate_limit_max_requests} requests / "
        f"{settings.rate_limit_window_ms} ms"
    )

    try:
        create_tables()
        logger.info("Database tables ready")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create tables: {e}")
        raise

    session_factory = get_session_factory()
    rate_limiter = get_rate_limiter()
    cache_store = CacheStore(session_factory)

    app.state.cache = cache_store
    app.state.aggregator = Aggregator.build(
        cache_store,
        LocationResolver(session_factory),
        settings=settings,
        rate_limiter=rate_limiter,
    )

    scheduler = None
    if settings.enable_scheduler:
        scheduler = MaintenanceScheduler(cache_store, rate_limiter, settings=settings)
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("Shutting down")
    if scheduler is not None:
        scheduler.stop()
    await app.state.aggregator.close()


app = FastAPI(
    title=SERVICE_NAME,
    description="Cached, rate-limited access to BEA, HUD, BLS and EIA cost-of-living data",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

app.include_router(bea.router, prefix="/api/v1")
app.include_router(hud.router, prefix="/api/v1")
app.include_router(bls.router, prefix="/api/v1")
app.include_router(eia.router, prefix="/api/v1")
app.include_router(location.router, prefix="/api/v1")
app.include_router(cache.router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with service info."""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "sources": ["bea", "hud", "bls", "eia"],
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    """
    Health check endpoint.

    Returns status of the service, database connectivity and scheduler.
    """
    health_status = {
        "status": "healthy",
        "service": "running",
        "database": "unknown",
    }

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["status"] = "degraded"
        health_status["database"] = "error"
        logger.warning(f"Database health check failed: {e}")

    scheduler = getattr(app.state, "scheduler", None)
    health_status["scheduler"] = scheduler.status() if scheduler else {"running": False, "jobs": []}
    return health_status
