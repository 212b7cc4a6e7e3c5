"""Health check router for the Guest Quota Gateway."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from services import ServiceContainer
from utils import GatewayError, get_logger

from .dependencies import get_services

router = APIRouter(prefix="/health", tags=["health"])
logger = get_logger(__name__)


@router.get("/", response_model=Dict[str, Any])
async def health_check(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Get application health status."""
    store_ok = await services.store.is_healthy()
    return {
        "status": "healthy" if store_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": services.config.app_version,
        "uptime_seconds": services.metrics.uptime_seconds,
        "store_connected": store_ok,
    }


@router.get("/detailed", response_model=Dict[str, Any])
async def detailed_health_check(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Health status with cache and identity figures."""
    health = await health_check(services)
    try:
        stats = await services.cache.stats()
        health["cache"] = stats.model_dump()
        health["identities"] = await services.store.count_identities()
    except GatewayError as e:
        logger.error("Detailed health check failed", error=e.message, endpoint="/health/detailed")
        health["status"] = "degraded"
        health["components"] = {"store": {"status": "unhealthy", "error": e.message}}

    last_sweep = services.reaper.last_result
    health["last_sweep"] = last_sweep.model_dump() if last_sweep else None
    return health
