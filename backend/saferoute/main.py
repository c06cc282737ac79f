"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from saferoute.config import settings, generate_api_key
from saferoute.api.v1.router import api_router
from saferoute.db.session import engine
from saferoute.models import Base
from saferoute.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    setup_logging,
)
from saferoute.core.exceptions import register_exception_handlers
from saferoute.services.route_provider import route_provider

VERSION = "1.0.0"

setup_logging()
logger = logging.getLogger(__name__)


def validate_startup_security() -> None:
    """Log configuration problems and exit if running insecurely in production."""
    errors = settings.validate_production_settings()
    for error in errors:
        logger.error(f"Configuration error: {error}")

    if errors and settings.is_production():
        logger.critical("Refusing to start in production with insecure configuration")
        sys.exit(1)

    logger.info(
        f"env={settings.app_env} api_key_required={settings.api_key_required} "
        f"rate_limit={settings.rate_limit_enabled} "
        f"provider={settings.route_provider_api}/{settings.route_travel_mode}"
    )

    if not settings.google_maps_key:
        logger.warning("GOOGLE_MAPS_KEY is not set; route comparison will fail upstream")

    if not settings.is_production() and not settings.api_keys:
        logger.info(
            "No API keys configured. To protect cell updates and police mapping set "
            f"API_KEYS={generate_api_key()} and API_KEY_REQUIRED=true"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the grid tables on startup; close the provider client and engine on shutdown."""
    validate_startup_security()

    # PostGIS extension must already be enabled
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Safety grid tables ready")
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {e}")
        if settings.is_production():
            sys.exit(1)

    yield

    await route_provider.close()
    await engine.dispose()
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    description=(
        "Compare alternative routes by the mean safety score of the geohash "
        "cells they cross. Cell updates and police mapping require an API key "
        f"in the `{settings.api_key_header}` header; reads are public. "
        f"Anonymous clients get {settings.rate_limit_requests} requests per "
        f"{settings.rate_limit_window_seconds}s, keyed clients three times that."
    ),
    version=VERSION,
    lifespan=lifespan,
    docs_url=None if settings.is_production() else "/docs",
    redoc_url=None if settings.is_production() else "/redoc",
    openapi_url=None if settings.is_production() else "/openapi.json",
)

register_exception_handlers(app)

# Last added runs first: logging assigns the request ID before rate limiting sees it
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=600,
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy", "service": settings.app_name, "environment": settings.app_env}


@app.get("/", tags=["Root"])
async def root():
    """Service name, version and entry points."""
    links = {"health": "/health", "compare": "/api/v1/routes/compare", "grid": "/api/v1/safety/grid"}
    if not settings.is_production():
        links["docs"] = "/docs"
    return {"name": settings.app_name, "version": VERSION, **links}
