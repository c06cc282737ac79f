"""Centralized exception handling with sanitized error responses."""

import logging
import traceback
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from saferoute.config import settings
from saferoute.services.cell_store import StoreUnavailableError
from saferoute.services.geohash_codec import CoordinateRangeError
from saferoute.services.route_comparison import NoRoutesFoundError, RouteInputError
from saferoute.services.route_provider import RouteProviderError

logger = logging.getLogger("api.errors")


# =============================================================================
# API Exception Classes
# =============================================================================

class APIException(Exception):
    """Base exception for API errors with safe messages."""

    def __init__(
        self,
        status_code: int = 500,
        detail: str = "An error occurred",
        error_code: Optional[str] = None,
        internal_message: Optional[str] = None,
    ):
        self.status_code = status_code
        self.detail = detail  # Safe message for client
        self.error_code = error_code or "INTERNAL_ERROR"
        self.internal_message = internal_message  # Full message for logs
        super().__init__(self.detail)


class InputException(APIException):
    """Required request input is missing or inconsistent."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=400,
            detail=detail,
            error_code="INVALID_INPUT",
        )


class ValidationException(APIException):
    """Input is present but out of range."""

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(
            status_code=422,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )
        self.field = field


class ResourceNotFoundException(APIException):
    """Resource not found."""

    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        super().__init__(
            status_code=404,
            detail=f"{resource} not found",
            error_code="NOT_FOUND",
            internal_message=f"{resource} {resource_id} not found" if resource_id else None,
        )


class RateLimitException(APIException):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int = 60):
        super().__init__(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            error_code="RATE_LIMIT_EXCEEDED",
        )
        self.retry_after = retry_after


class ServiceUnavailableException(APIException):
    """Route provider or store unavailable."""

    def __init__(self, service: str = "Service", reason: Optional[str] = None):
        internal = f"{service} is unavailable"
        if reason:
            internal += f": {reason}"
        super().__init__(
            status_code=503,
            detail="Service temporarily unavailable. Please try again later.",
            error_code="SERVICE_UNAVAILABLE",
            internal_message=internal,
        )


def to_api_exception(exc: Exception) -> APIException:
    """Translate a service-layer error into the API error it surfaces as."""
    if isinstance(exc, RouteInputError):
        return InputException(str(exc))
    if isinstance(exc, CoordinateRangeError):
        return ValidationException(str(exc), field="coordinates")
    if isinstance(exc, NoRoutesFoundError):
        return ResourceNotFoundException("Route")
    if isinstance(exc, RouteProviderError):
        return ServiceUnavailableException("Route provider", reason=str(exc))
    if isinstance(exc, StoreUnavailableError):
        return ServiceUnavailableException("Cell store", reason=str(exc))
    return APIException(internal_message=f"{type(exc).__name__}: {exc}")


# =============================================================================
# Error Response Formatting
# =============================================================================

def create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    request_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create a standardized error response."""
    response = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if request_id:
        response["error"]["request_id"] = request_id

    if details and not settings.is_production():
        response["error"]["details"] = details

    return response


def sanitize_error_message(message: str) -> str:
    """Replace messages that leak connection strings, SQL or keys."""
    sensitive_patterns = [
        "Traceback",
        "File \"",
        "SELECT ",
        "INSERT ",
        "UPDATE ",
        "postgresql",
        "asyncpg",
        "sqlalchemy",
        "password",
        "key=",
        "api_key",
    ]

    message_lower = message.lower()
    for pattern in sensitive_patterns:
        if pattern.lower() in message_lower:
            return "An internal error occurred. Please try again later."

    if len(message) > 200:
        return message[:200] + "..."

    return message


# =============================================================================
# Exception Handlers
# =============================================================================

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def get_request_id(request: Request) -> str:
    """Request ID assigned by the logging middleware, or a fresh one."""
    return getattr(request.state, "request_id", None) or str(uuid4())[:8]


def _error_json(
    request_id: str,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(status_code, error_code, message, request_id, details),
        headers=headers,
    )


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    request_id = get_request_id(request)

    log = logger.error if exc.status_code >= 500 else logger.warning
    suffix = f" | Internal: {exc.internal_message}" if exc.internal_message else ""
    log(f"[{request_id}] {exc.error_code}: {exc.detail}{suffix}")

    headers = None
    if isinstance(exc, RateLimitException):
        headers = {"Retry-After": str(exc.retry_after)}

    return _error_json(request_id, exc.status_code, exc.error_code, exc.detail, headers=headers)


async def service_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle service-layer errors that escaped a route handler."""
    return await api_exception_handler(request, to_api_exception(exc))


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Render HTTPException in the standard error envelope, sanitizing 5xx detail."""
    request_id = get_request_id(request)

    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    if exc.status_code >= 500:
        logger.error(f"[{request_id}] HTTP {exc.status_code}: {detail}")
        detail = sanitize_error_message(detail)
    else:
        logger.info(f"[{request_id}] HTTP {exc.status_code}: {detail}")

    return _error_json(
        request_id,
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "ERROR"),
        detail,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    request_id = get_request_id(request)

    field_errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        msg = error["msg"]
        if settings.is_production() and "value_error" in str(error.get("type", "")):
            msg = "Invalid value provided"
        field_errors.append({"field": field, "message": msg})

    logger.info(f"[{request_id}] Validation error: {len(field_errors)} field(s)")

    return _error_json(
        request_id, 422, "VALIDATION_ERROR", "Invalid request data", details={"fields": field_errors}
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler; never exposes exception text to the client."""
    request_id = get_request_id(request)

    logger.error(f"[{request_id}] Unhandled exception: {type(exc).__name__}: {exc}")
    if settings.debug:
        logger.error(traceback.format_exc())

    return _error_json(
        request_id, 500, "INTERNAL_ERROR", "An unexpected error occurred. Please try again later."
    )


SERVICE_ERRORS = (
    RouteInputError,
    CoordinateRangeError,
    NoRoutesFoundError,
    RouteProviderError,
    StoreUnavailableError,
)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIException, api_exception_handler)
    for service_error in SERVICE_ERRORS:
        app.add_exception_handler(service_error, service_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
