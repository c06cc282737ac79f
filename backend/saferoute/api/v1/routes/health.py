"""Health check endpoints."""

import redis.asyncio as redis
from fastapi import APIRouter, Depends, Response
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from saferoute.config import settings
from saferoute.db.session import get_db
from saferoute.services.route_provider import route_provider

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "healthy"}


@router.get("/db")
async def database_health(response: Response, db: AsyncSession = Depends(get_db)):
    """Check database connection health.

    Returns HTTP 503 if database is unavailable.
    """
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except (SQLAlchemyError, OSError) as e:
        response.status_code = 503
        return {"status": "unhealthy", "database": "disconnected", "error": type(e).__name__}


@router.get("/ready")
async def readiness_check(response: Response, db: AsyncSession = Depends(get_db)):
    """Readiness check for the database, Redis and provider configuration.

    Returns HTTP 503 if the database is unavailable. Redis is reported but
    not required since rate limiting fails open.
    """
    checks = {
        "database": False,
        "redis": False,
        "route_provider_configured": bool(route_provider.api_key),
    }
    errors = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except (SQLAlchemyError, OSError) as e:
        errors["database"] = type(e).__name__

    try:
        client = redis.from_url(settings.redis_url)
        await client.ping()
        await client.aclose()
        checks["redis"] = True
    except (RedisError, OSError) as e:
        errors["redis"] = type(e).__name__

    ready = checks["database"]
    if not ready:
        response.status_code = 503

    result = {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
    }
    if errors:
        result["errors"] = errors
    return result
