"""Metrics router for the Guest Quota Gateway."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from services import ServiceContainer
from utils import GatewayError, get_logger

from .dependencies import get_services

router = APIRouter(prefix="/metrics", tags=["metrics"])
logger = get_logger(__name__)


@router.get("/", response_class=Response)
async def prometheus_metrics(services: ServiceContainer = Depends(get_services)) -> Response:
    """Get Prometheus metrics in text format."""
    return Response(
        content=services.metrics.get_prometheus_metrics(),
        media_type=services.metrics.content_type,
    )


@router.get("/json", response_model=Dict[str, Any])
async def json_metrics(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Get service and cache figures in JSON format."""
    data = services.metrics.get_service_info()
    try:
        data["cache"] = (await services.cache.stats()).model_dump()
    except GatewayError as e:
        logger.error("Failed to retrieve cache statistics", error=e.message, endpoint="/metrics/json")
        data["cache"] = {"error": "Failed to retrieve cache statistics", "details": e.message}
    return data
