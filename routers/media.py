"""Cached, quota-gated media endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from models import EndpointClass
from services import GatewayResponse, ServiceContainer

from .dependencies import get_bearer_token, get_services

router = APIRouter(prefix="/api/v1/media", tags=["media"])


def _respond(result: GatewayResponse) -> JSONResponse:
    headers = {
        "X-Cache": str(result.cache_status),
        "X-Cache-Key": result.cache_key,
    }
    if result.quota is not None:
        headers["X-Quota-Used"] = str(result.quota.used)
        headers["X-Quota-Limit"] = str(result.quota.limit)
        headers["X-Quota-Remaining"] = str(result.quota.remaining)
    return JSONResponse(content=jsonable_encoder(result.payload), headers=headers)


async def _serve(
    services: ServiceContainer,
    token: Optional[str],
    endpoint_class: EndpointClass,
    params: Dict[str, Any],
    query: Optional[str],
) -> JSONResponse:
    result = await services.gateway.handle(token, endpoint_class.value, params, query=query)
    return _respond(result)


@router.get("/search")
async def search(
    q: str = Query(..., min_length=1, max_length=200, description="Search query"),
    max_results: int = Query(default=25, ge=1, le=50),
    page_token: Optional[str] = Query(default=None),
    order: Optional[str] = Query(default=None, pattern="^(date|rating|relevance|title|viewCount)$"),
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    params = {"q": q, "max_results": max_results, "page_token": page_token, "order": order}
    return await _serve(services, token, EndpointClass.SEARCH, params, q)


@router.get("/video/{video_id}")
async def video(
    video_id: str = Path(..., pattern=r"^[A-Za-z0-9_-]{11}$"),
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    return await _serve(services, token, EndpointClass.VIDEO, {"video_id": video_id}, video_id)


@router.get("/channel/{channel_id}")
async def channel(
    channel_id: str = Path(..., pattern=r"^UC[A-Za-z0-9_-]{22}$"),
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    return await _serve(services, token, EndpointClass.CHANNEL, {"channel_id": channel_id}, channel_id)


@router.get("/trending")
async def trending(
    region_code: str = Query(default="US", pattern="^[A-Z]{2}$"),
    max_results: int = Query(default=25, ge=1, le=50),
    category_id: Optional[str] = Query(default=None),
    token: Optional[str] = Depends(get_bearer_token),
    services: ServiceContainer = Depends(get_services),
) -> JSONResponse:
    params = {"region_code": region_code, "max_results": max_results, "category_id": category_id}
    return await _serve(services, token, EndpointClass.TRENDING, params, region_code)
