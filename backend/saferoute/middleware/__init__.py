"""Middleware modules for request processing."""

from saferoute.middleware.rate_limit import (
    RateLimitMiddleware,
    TTLCounterStore,
    InMemoryTTLStore,
    RedisTTLStore,
)
from saferoute.middleware.request_logging import RequestLoggingMiddleware, setup_logging

__all__ = [
    "RateLimitMiddleware",
    "TTLCounterStore",
    "InMemoryTTLStore",
    "RedisTTLStore",
    "RequestLoggingMiddleware",
    "setup_logging",
]
