"""
Car Rental API - Main Application Entry Point

Bookings, driver dispatch and Khalti payment reconciliation:
- Driver assignment guarded by conditional updates (no double dispatch)
- Idempotent payment reconciliation across verify, webhook and lookup
- Booking state machine with admin overrides
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from carrental.core.config import get_settings
from carrental.core.logging import setup_logging, get_logger
from carrental.core.metrics import metrics_endpoint
from carrental.api.router import api_router
from carrental.api.middleware import RequestLoggingMiddleware
from carrental.db.session import AsyncSessionLocal
from carrental.services.auth_service import ensure_admin
from carrental.services.cache_service import get_redis, close_redis, get_cache_stats
from carrental.services.gateway_factory import close_gateway

settings = get_settings()


async def _bootstrap_admin(logger) -> None:
    if not (settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD):
        return
    async with AsyncSessionLocal() as session:
        async with session.begin():
            await ensure_admin(session, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    logger.info("bootstrap_admin_ready", email=settings.ADMIN_EMAIL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    # OTP codes live in Redis; password login keeps working without it
    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="One-time login codes disabled")

    await _bootstrap_admin(logger)

    if not settings.KHALTI_SECRET_KEY:
        logger.warning("khalti_not_configured")

    yield

    await close_gateway()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Car rental API: bookings, driver dispatch, Khalti payments",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
