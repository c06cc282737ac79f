"""Audit logging for grid writes and other notable operations."""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request
from pydantic import BaseModel

logger = logging.getLogger("api.audit")


class AuditAction(str, Enum):
    """Audit action types."""

    # Reads
    ROUTE_COMPARE = "route.compare"
    CELL_READ = "cell.read"
    POLICE_READ = "police.read"

    # Writes
    CELL_UPDATE = "cell.update"
    POLICE_MAPPING = "police.mapping"

    # Security events
    AUTH_FAILURE = "auth.failure"
    RATE_LIMITED = "security.rate_limited"


class AuditSeverity(str, Enum):
    """Audit event severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEntry(BaseModel):
    """Audit log entry structure."""

    timestamp: datetime
    action: AuditAction
    severity: AuditSeverity
    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    api_key_id: Optional[str] = None  # Masked key identifier
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    success: bool = True


class AuditLogger:
    """Writes one JSON line per audited event to the ``api.audit`` logger."""

    def __init__(self):
        self._logger = logger

    def _format_entry(self, entry: AuditEntry) -> str:
        return json.dumps(entry.model_dump(mode="json", exclude_none=True), default=str)

    def log(
        self,
        action: AuditAction,
        *,
        severity: AuditSeverity = AuditSeverity.INFO,
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        api_key_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> AuditEntry:
        """
        Log an audit event.

        Args:
            action: The action being audited
            severity: Event severity level
            request_id: Unique request identifier
            client_ip: Client IP address
            api_key_id: Already masked API key
            resource_type: Type of resource touched (cell, route, police)
            resource_id: ID of resource touched
            details: Additional context
            success: Whether the action succeeded
        """
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc),
            action=action,
            severity=severity,
            request_id=request_id,
            client_ip=client_ip,
            api_key_id=api_key_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            success=success,
        )

        log_message = f"AUDIT: {self._format_entry(entry)}"
        if severity == AuditSeverity.ERROR:
            self._logger.error(log_message)
        elif severity == AuditSeverity.WARNING:
            self._logger.warning(log_message)
        else:
            self._logger.info(log_message)
        return entry

    def log_request(
        self,
        request: Request,
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Log an operation using the request context set by the middleware."""
        return self.log(
            action,
            request_id=getattr(request.state, "request_id", None),
            client_ip=request.client.host if request.client else None,
            api_key_id=getattr(request.state, "api_key_id", None),
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
        )

    def log_rate_limited(self, request_id: Optional[str], client_ip: str, endpoint: str) -> AuditEntry:
        """Log rate limit hit."""
        return self.log(
            AuditAction.RATE_LIMITED,
            severity=AuditSeverity.WARNING,
            request_id=request_id,
            client_ip=client_ip,
            details={"endpoint": endpoint},
            success=False,
        )


# Global audit logger instance
audit_log = AuditLogger()
