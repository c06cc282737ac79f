"""API v1 router aggregation."""

from fastapi import APIRouter

from saferoute.api.v1.routes import health, police, routing, safety

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(routing.router, prefix="/routes", tags=["Routes"])
api_router.include_router(safety.router, prefix="/safety", tags=["Safety"])
api_router.include_router(police.router, prefix="/police", tags=["Police"])
