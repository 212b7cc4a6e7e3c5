"""API routers for the Guest Quota Gateway."""

from .auth import router as auth_router
from .cache_admin import router as cache_router
from .health import router as health_router
from .media import router as media_router
from .metrics import router as metrics_router

__all__ = ["auth_router", "cache_router", "health_router", "media_router", "metrics_router"]
