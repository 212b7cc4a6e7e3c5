"""Error taxonomy for the Guest Quota Gateway.

Every error the gateway reports to a caller derives from ``GatewayError`` and
carries a stable machine-readable code, a message, a details mapping and the
HTTP status the routing layer should answer with.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response body."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Dict[str, Any] = Field(default_factory=dict, description="Additional error context")
    correlation_id: Optional[str] = Field(default=None, description="Request correlation ID")


class GatewayError(Exception):
    """Base exception for gateway errors."""

    http_status: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, correlation_id: Optional[str] = None) -> ErrorResponse:
        """Convert to an error response body."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details,
            correlation_id=correlation_id,
        )


class ValidationError(GatewayError):
    """Malformed caller input."""

    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationRequired(GatewayError):
    """Operation needs an authenticated guest identity."""

    http_status = 401

    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_REQUIRED", message, details)


class QuotaExceeded(GatewayError):
    """The identity has no quota left for this call. Never retried."""

    http_status = 429

    def __init__(self, quota_used: int, quota_limit: int, resets_at: datetime):
        self.quota_used = quota_used
        self.quota_limit = quota_limit
        self.resets_at = resets_at
        super().__init__(
            "QUOTA_EXCEEDED",
            "Guest quota exhausted",
            {
                "quotaUsed": quota_used,
                "quotaLimit": quota_limit,
                "resetsAt": resets_at.isoformat(),
            },
        )


class AbuseDetected(GatewayError):
    """Identity issuance refused for a client fingerprint."""

    http_status = 429

    def __init__(self, active_sessions: int, threshold: int):
        self.active_sessions = active_sessions
        self.threshold = threshold
        super().__init__(
            "ABUSE_DETECTED",
            "Too many active guest sessions for this client",
            {"activeSessions": active_sessions, "threshold": threshold},
        )


class TokenError(GatewayError):
    """Token could not be decoded or verified."""

    http_status = 401

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TOKEN", message, details)


class TokenExpired(TokenError):
    """Token signature is valid but its expiry has passed."""

    def __init__(self, expired_at: datetime):
        self.expired_at = expired_at
        super().__init__("Token expired", {"expiredAt": expired_at.isoformat()})
        self.code = "TOKEN_EXPIRED"


class UpstreamError(GatewayError):
    """Base for failures reported by the upstream provider."""

    http_status = 502

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class UpstreamRateLimited(UpstreamError):
    """Upstream throttled the call. Retryable."""

    http_status = 503

    def __init__(self, message: str = "Upstream rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_RATE_LIMITED", message, details)


class UpstreamQuotaExceeded(UpstreamError):
    """Upstream daily quota is exhausted. Never retried."""

    http_status = 503

    def __init__(self, message: str = "Upstream quota exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_QUOTA_EXCEEDED", message, details)


class UpstreamUnavailable(UpstreamError):
    """Transport failure or server error from the upstream. Retryable."""

    http_status = 503

    def __init__(self, message: str = "Upstream unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_UNAVAILABLE", message, details)


class NotFound(UpstreamError):
    """Upstream resource does not exist."""

    http_status = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreUnavailable(GatewayError):
    """The document store could not complete an operation."""

    http_status = 503

    def __init__(self, operation: str, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        merged = {"operation": operation}
        merged.update(details or {})
        super().__init__("STORE_UNAVAILABLE", message, merged)
