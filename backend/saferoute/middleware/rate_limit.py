"""Rate limiting middleware backed by a keyed TTL counter store.

Each client key maps to a counter that expires after the rate limit window.
The store is injected so counters can live in Redis and survive restarts
and scale-out; the in-memory store is for development and tests.
"""

import abc
import asyncio
import hashlib
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from fastapi import Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from saferoute.config import settings
from saferoute.core.audit import audit_log

logger = logging.getLogger(__name__)


class TTLCounterStore(abc.ABC):
    """Keyed counters with an explicit time-to-live."""

    @abc.abstractmethod
    async def hit(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        """Increment the counter for ``key``.

        The TTL starts on the first hit of a window.

        Returns:
            Tuple of (count after increment, seconds until the counter expires)
        """

    async def close(self) -> None:
        pass


class InMemoryTTLStore(TTLCounterStore):
    """
    Process-local counter store.

    Note: Counters are lost on restart and not shared between workers.
    Use RedisTTLStore for deployments with more than one process.
    Expired counters are swept every ``cleanup_every`` hits.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, cleanup_every: int = 1000):
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_every = cleanup_every
        self._hits = 0

    async def hit(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        now = self._clock()
        async with self._lock:
            count, expires_at = self._counters.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + ttl_seconds
            count += 1
            self._counters[key] = (count, expires_at)

            self._hits += 1
            if self._hits % self._cleanup_every == 0:
                self._drop_expired(now)
        return count, max(1, int(expires_at - now + 0.999))

    def _drop_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]

    async def cleanup(self) -> None:
        """Drop expired counters."""
        async with self._lock:
            self._drop_expired(self._clock())


class RedisTTLStore(TTLCounterStore):
    """Redis counter store using INCR and EXPIRE.

    Fails open: when Redis errors, the hit counts as the first of its window.
    """

    KEY_PREFIX = "rate_limit:"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self._redis = client or redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def hit(self, key: str, ttl_seconds: int) -> Tuple[int, int]:
        rate_key = f"{self.KEY_PREFIX}{key}"
        try:
            pipe = self._redis.pipeline()
            pipe.incr(rate_key)
            pipe.expire(rate_key, ttl_seconds, nx=True)
            pipe.ttl(rate_key)
            count, _, ttl = await pipe.execute()
        except (RedisError, OSError) as e:
            logger.warning(f"Rate limit store unavailable, allowing request: {e}")
            return 1, ttl_seconds
        return int(count), int(ttl) if ttl and ttl > 0 else ttl_seconds

    async def close(self) -> None:
        await self._redis.aclose()


def build_counter_store() -> TTLCounterStore:
    """Counter store for the configured environment."""
    if settings.redis_url and settings.is_production():
        return RedisTTLStore(settings.redis_url)
    return InMemoryTTLStore()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window rate limiting per client.

    Clients are identified by API key when one is sent, otherwise by IP.
    Keyed clients get three times the anonymous limit.
    """

    # Paths exempt from rate limiting
    EXEMPT_PATHS = {"/health", "/health/ready", "/health/db", "/docs", "/redoc", "/openapi.json"}

    def __init__(self, app, store: Optional[TTLCounterStore] = None):
        super().__init__(app)
        self.store = store or build_counter_store()

    def _get_client_identifier(self, request: Request) -> str:
        api_key = request.headers.get(settings.api_key_header)
        if api_key:
            return f"key:{hashlib.sha256(api_key.encode()).hexdigest()[:16]}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _get_limit(self, request: Request) -> int:
        if request.headers.get(settings.api_key_header):
            return settings.rate_limit_requests * 3
        return settings.rate_limit_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not settings.rate_limit_enabled or request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_id = self._get_client_identifier(request)
        max_requests = self._get_limit(request)
        window = settings.rate_limit_window_seconds

        count, reset_in = await self.store.hit(client_id, window)

        if count > max_requests:
            audit_log.log_rate_limited(
                getattr(request.state, "request_id", None),
                client_id,
                request.url.path,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "code": "RATE_LIMIT_EXCEEDED",
                        "message": "Rate limit exceeded. Please try again later.",
                    },
                    "retry_after": reset_in,
                },
                headers={
                    "Retry-After": str(reset_in),
                    "X-RateLimit-Limit": str(max_requests),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, max_requests - count))
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + reset_in)
        return response
