"""Administrative cache router."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from models import CacheStats, EndpointClass, PopularEntry, SweepResult
from services import ServiceContainer

from .dependencies import get_services

router = APIRouter(prefix="/api/v1/cache", tags=["cache"])


class PatternInvalidation(BaseModel):
    """Exact key or ``*`` glob to invalidate."""

    pattern: str = Field(..., min_length=1, description="Cache key or glob pattern")


@router.get("/stats", response_model=CacheStats)
async def cache_stats(services: ServiceContainer = Depends(get_services)) -> CacheStats:
    return await services.cache.stats()


@router.get("/popular", response_model=List[PopularEntry])
async def popular_entries(
    limit: int = Query(default=10, ge=1, le=100),
    services: ServiceContainer = Depends(get_services),
) -> List[PopularEntry]:
    return await services.cache.popular(limit)


@router.delete("/invalidate")
async def invalidate_all(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    removed = await services.cache.invalidate_all()
    return {"success": True, "removed": removed}


@router.delete("/invalidate-pattern")
async def invalidate_pattern(
    body: PatternInvalidation,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    removed = await services.cache.invalidate(body.pattern)
    return {"success": True, "pattern": body.pattern, "removed": removed}


@router.delete("/invalidate/{endpoint_class}")
async def invalidate_endpoint(
    endpoint_class: EndpointClass,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    removed = await services.cache.invalidate_class(endpoint_class.value)
    return {"success": True, "endpoint_class": endpoint_class.value, "removed": removed}


@router.post("/warm", status_code=status.HTTP_202_ACCEPTED)
async def warm_cache(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Start warming in the background."""
    seeds = services.cache.default_seeds()
    services.cache.start_warming(services.fetcher, seeds)
    return {"success": True, "status": "started", "seeds": len(seeds)}


@router.delete("/cleanup")
async def cleanup_cache(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    removed = await services.cache.cleanup()
    return {"success": True, "removed": removed}


@router.post("/sweep", response_model=SweepResult)
async def sweep_now(services: ServiceContainer = Depends(get_services)) -> SweepResult:
    """Run the full expiry sweep now."""
    return await services.reaper.sweep()


@router.get("/health")
async def cache_health(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    healthy = await services.store.is_healthy()
    return {
        "status": "healthy" if healthy else "unhealthy",
        "store_connected": healthy,
        "warming": services.cache.warming,
    }
