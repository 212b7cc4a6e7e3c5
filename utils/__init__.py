"""Utility modules for the Guest Quota Gateway."""

from .clock import Clock, from_epoch_ms, to_epoch_ms, utc_now
from .errors import (
    AbuseDetected,
    AuthenticationRequired,
    ErrorResponse,
    GatewayError,
    NotFound,
    QuotaExceeded,
    StoreUnavailable,
    TokenError,
    TokenExpired,
    UpstreamError,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
    UpstreamUnavailable,
    ValidationError,
)
from .logging import (
    configure_logging,
    create_contextual_logger,
    get_logger,
    log_exception,
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
)

__all__ = [
    "Clock",
    "from_epoch_ms",
    "to_epoch_ms",
    "utc_now",
    "AbuseDetected",
    "AuthenticationRequired",
    "ErrorResponse",
    "GatewayError",
    "NotFound",
    "QuotaExceeded",
    "StoreUnavailable",
    "TokenError",
    "TokenExpired",
    "UpstreamError",
    "UpstreamQuotaExceeded",
    "UpstreamRateLimited",
    "UpstreamUnavailable",
    "ValidationError",
    "configure_logging",
    "create_contextual_logger",
    "get_logger",
    "log_exception",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
]
