"""Core security, error handling and audit modules."""

# Security utilities
from saferoute.core.security import (
    verify_api_key,
    mask_api_key,
    APIKeyValidator,
)

# Exception handling
from saferoute.core.exceptions import (
    APIException,
    InputException,
    ValidationException,
    ResourceNotFoundException,
    RateLimitException,
    ServiceUnavailableException,
    register_exception_handlers,
    sanitize_error_message,
    to_api_exception,
)

# Audit logging
from saferoute.core.audit import (
    AuditAction,
    AuditSeverity,
    AuditLogger,
    audit_log,
)

__all__ = [
    # Security
    "verify_api_key",
    "mask_api_key",
    "APIKeyValidator",
    # Exceptions
    "APIException",
    "InputException",
    "ValidationException",
    "ResourceNotFoundException",
    "RateLimitException",
    "ServiceUnavailableException",
    "register_exception_handlers",
    "sanitize_error_message",
    "to_api_exception",
    # Audit
    "AuditAction",
    "AuditSeverity",
    "AuditLogger",
    "audit_log",
]
