"""API key verification for mutating endpoints."""

import hmac
from typing import List, Optional, Tuple

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from saferoute.config import settings
from saferoute.core.audit import AuditAction, AuditSeverity, audit_log


# API Key header scheme
api_key_header = APIKeyHeader(
    name=settings.api_key_header,
    auto_error=False,
    description="API key for cell updates and police mapping"
)

MIN_API_KEY_LENGTH = 32


class APIKeyValidator:
    """Validates API keys with timing-safe comparison."""

    def __init__(self, keys: Optional[List[str]] = None, required: Optional[bool] = None):
        self._keys = keys
        self._required = required

    @property
    def keys(self) -> List[str]:
        return self._keys if self._keys is not None else settings.get_api_keys_list()

    @property
    def required(self) -> bool:
        return self._required if self._required is not None else settings.api_key_required

    def validate(self, api_key: Optional[str]) -> Tuple[bool, Optional[str]]:
        """
        Validate an API key.

        Returns:
            Tuple of (is_valid, error_message)
        """
        valid_keys = self.keys

        if not self.required and (not api_key or not valid_keys):
            return True, None

        if not api_key:
            return False, "API key is required"

        if len(api_key) < MIN_API_KEY_LENGTH:
            return False, "Invalid API key format"

        if not valid_keys:
            if settings.is_production():
                return False, "No API keys configured"
            return True, None

        if not any(hmac.compare_digest(api_key, key) for key in valid_keys):
            return False, "Invalid API key"

        return True, None


# Global validator instance
api_key_validator = APIKeyValidator()


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header)
) -> Optional[str]:
    """
    FastAPI dependency for API key verification.

    Usage:
        @router.post("/update", dependencies=[Depends(verify_api_key)])
    """
    is_valid, error_message = api_key_validator.validate(api_key)

    if not is_valid:
        audit_log.log(
            AuditAction.AUTH_FAILURE,
            severity=AuditSeverity.WARNING,
            request_id=getattr(request.state, "request_id", None),
            client_ip=request.client.host if request.client else None,
            details={"endpoint": request.url.path, "reason": error_message},
            success=False,
        )
        raise HTTPException(
            status_code=401,
            detail=error_message or "Authentication required",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if api_key:
        request.state.api_key_id = mask_api_key(api_key)
    return api_key


def mask_api_key(api_key: str) -> str:
    """
    Mask an API key for logging purposes.

    Example: sk_a1b2c3d4... -> sk_a1b2********
    """
    if not api_key or len(api_key) < 12:
        return "****"

    if "_" in api_key:
        prefix, token = api_key.split("_", 1)
        return f"{prefix}_{token[:4]}{'*' * 8}"

    return f"{api_key[:8]}{'*' * 8}"
