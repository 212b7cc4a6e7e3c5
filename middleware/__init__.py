"""HTTP middleware for the Guest Quota Gateway."""

from .client_context import ClientContextMiddleware, client_context_from_request
from .correlation import CorrelationMiddleware

__all__ = ["ClientContextMiddleware", "CorrelationMiddleware", "client_context_from_request"]
