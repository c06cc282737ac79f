"""Request logging middleware and logging setup."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from saferoute.config import settings
from saferoute.core.security import mask_api_key


logger = logging.getLogger("api.requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs incoming requests and their responses.

    Every request gets a short request ID, stored on ``request.state`` for
    handlers and audit entries and echoed in the ``X-Request-ID`` header.
    """

    # Paths with reduced logging (health checks, etc.)
    QUIET_PATHS = {"/health", "/health/ready", "/health/db"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", "")[:32] or str(uuid.uuid4())[:8]
        request.state.request_id = request_id

        if not settings.log_requests:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        is_quiet_path = path in self.QUIET_PATHS

        if not is_quiet_path:
            caller = self._get_client_ip(request)
            api_key = request.headers.get(settings.api_key_header)
            if api_key:
                caller += f" key={mask_api_key(api_key)}"
            logger.info(f"[{request_id}] --> {method} {path} from {caller}")

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(f"[{request_id}] <-- 500 {method} {path} ({duration_ms:.2f}ms) ERROR: {e}")
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id

        log_message = f"[{request_id}] <-- {response.status_code} {method} {path} ({duration_ms:.2f}ms)"
        if response.status_code >= 500:
            logger.error(log_message)
        elif response.status_code >= 400:
            logger.warning(log_message)
        elif not is_quiet_path:
            logger.info(log_message)
        else:
            logger.debug(log_message)

        return response

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request, handling proxies."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"


def setup_logging():
    """Configure logging for the application."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    logging.getLogger("api.requests").setLevel(log_level)
    logging.getLogger("api.audit").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
