"""Upstream video API client and retry policy.

The rest of the gateway only sees the ``UpstreamFetcher`` contract:
``fetch(endpoint_class, params) -> FetchResult(payload, cost)``.
"""

import asyncio
import random
import time
from typing import Any, Dict, NamedTuple, Optional, Protocol, Tuple

import httpx

from config import ApplicationConfig
from models import EndpointClass
from utils import (
    NotFound,
    UpstreamError,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
    UpstreamUnavailable,
    ValidationError,
    create_contextual_logger,
)

from .metrics import upstream_request_seconds, upstream_requests_total, upstream_units_total

# resource path, fixed query params, declared quota units
ENDPOINTS: Dict[str, Tuple[str, Dict[str, str], int]] = {
    EndpointClass.SEARCH.value: ("/search", {"part": "snippet", "type": "video"}, 100),
    EndpointClass.VIDEO.value: ("/videos", {"part": "snippet,statistics,contentDetails"}, 1),
    EndpointClass.CHANNEL.value: ("/channels", {"part": "snippet,statistics,brandingSettings"}, 1),
    EndpointClass.TRENDING.value: ("/videos", {"part": "snippet,statistics", "chart": "mostPopular"}, 1),
}

QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}

# Client-facing param names to provider query names.
PARAM_NAMES = {
    "q": "q",
    "max_results": "maxResults",
    "page_token": "pageToken",
    "order": "order",
    "video_id": "id",
    "channel_id": "id",
    "region_code": "regionCode",
    "category_id": "videoCategoryId",
}


class FetchResult(NamedTuple):
    """Upstream payload and its declared quota cost."""

    payload: Any
    cost: int


class UpstreamFetcher(Protocol):
    async def fetch(self, endpoint_class: str, params: Dict[str, Any]) -> FetchResult:
        ...


def _error_reason(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    errors = body.get("error", {}).get("errors", []) if isinstance(body, dict) else []
    return errors[0].get("reason") if errors else None


class YouTubeDataClient:
    """Async client for the YouTube Data API v3."""

    def __init__(self, config: ApplicationConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self.logger = create_contextual_logger(__name__, service="youtube_client")
        self._client = client
        self._owns_client = client is None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.youtube_base_url,
                timeout=self.config.upstream_timeout,
                headers={"User-Agent": f"GuestQuotaGateway/{self.config.app_version}"},
            )
            self._owns_client = True

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _build_query(self, endpoint_class: str, params: Dict[str, Any]) -> Tuple[str, Dict[str, Any], int]:
        if endpoint_class not in ENDPOINTS:
            raise ValidationError("Unknown endpoint class", {"endpoint_class": endpoint_class})
        path, fixed, cost = ENDPOINTS[endpoint_class]
        query: Dict[str, Any] = dict(fixed)
        for name, value in params.items():
            if value is not None:
                query[PARAM_NAMES.get(name, name)] = value
        if endpoint_class == EndpointClass.TRENDING.value:
            query.setdefault("regionCode", self.config.youtube_region_code)
        query["key"] = self.config.youtube_api_key
        return path, query, cost

    def _raise_for_status(self, endpoint_class: str, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        reason = _error_reason(response)
        details = {"endpoint_class": endpoint_class, "status_code": status, "reason": reason}
        if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS):
            raise UpstreamRateLimited(details=details)
        if status == 403 and reason in QUOTA_REASONS:
            raise UpstreamQuotaExceeded(details=details)
        if status == 404:
            raise NotFound(details=details)
        if status >= 500:
            raise UpstreamUnavailable(f"Upstream returned {status}", details)
        raise UpstreamError("UPSTREAM_ERROR", f"Upstream returned {status}", details)

    async def fetch(self, endpoint_class: str, params: Dict[str, Any]) -> FetchResult:
        """Fetch one resource from the provider."""
        if self._client is None:
            await self.start()
        if self._client is None:
            raise UpstreamUnavailable("Upstream client is not started", {"endpoint_class": endpoint_class})

        path, query, cost = self._build_query(endpoint_class, params)
        started = time.perf_counter()
        try:
            response = await self._client.get(path, params=query)
        except httpx.HTTPError as e:
            upstream_requests_total.labels(endpoint_class=endpoint_class, status="transport_error").inc()
            raise UpstreamUnavailable(str(e), {"endpoint_class": endpoint_class}) from e
        finally:
            upstream_request_seconds.labels(endpoint_class=endpoint_class).observe(time.perf_counter() - started)

        upstream_requests_total.labels(endpoint_class=endpoint_class, status=str(response.status_code)).inc()
        self._raise_for_status(endpoint_class, response)
        upstream_units_total.labels(endpoint_class=endpoint_class).inc(cost)

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                "UPSTREAM_ERROR", "Upstream returned a non-JSON body", {"endpoint_class": endpoint_class}
            ) from e
        if not isinstance(payload, dict):
            raise UpstreamError(
                "UPSTREAM_ERROR",
                "Upstream returned an unexpected payload",
                {"endpoint_class": endpoint_class, "payload_type": type(payload).__name__},
            )
        if endpoint_class in (EndpointClass.VIDEO.value, EndpointClass.CHANNEL.value) and not payload.get("items"):
            raise NotFound(f"No {endpoint_class} found", {"endpoint_class": endpoint_class, "params": params})

        self.logger.debug(
            "Upstream fetch completed",
            endpoint_class=endpoint_class,
            cost=cost,
            items=len(payload.get("items", [])),
        )
        return FetchResult(payload=payload, cost=cost)


class RetryingFetcher:
    """Retries transient upstream failures with exponential backoff.

    Rate limiting and outages are retried up to ``max_attempts`` in total.
    Upstream quota exhaustion and missing resources propagate immediately.
    """

    RETRYABLE = (UpstreamRateLimited, UpstreamUnavailable)

    def __init__(
        self,
        fetcher: UpstreamFetcher,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: bool = True,
    ) -> None:
        self.fetcher = fetcher
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.logger = create_contextual_logger(__name__, service="retrying_fetcher")

    @classmethod
    def from_config(cls, fetcher: UpstreamFetcher, config: ApplicationConfig) -> "RetryingFetcher":
        return cls(
            fetcher,
            max_attempts=config.upstream_retry_attempts,
            base_delay=config.upstream_retry_base_delay,
            max_delay=config.upstream_retry_max_delay,
        )

    def _delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)
        return delay

    async def fetch(self, endpoint_class: str, params: Dict[str, Any]) -> FetchResult:
        for attempt in range(self.max_attempts):
            try:
                return await self.fetcher.fetch(endpoint_class, params)
            except self.RETRYABLE as e:
                if attempt + 1 >= self.max_attempts:
                    self.logger.error(
                        "Upstream retries exhausted",
                        endpoint_class=endpoint_class,
                        attempts=self.max_attempts,
                        error=e.code,
                    )
                    raise
                delay = self._delay(attempt)
                self.logger.warning(
                    "Upstream fetch failed, retrying",
                    endpoint_class=endpoint_class,
                    attempt=attempt + 1,
                    delay_seconds=round(delay, 3),
                    error=e.code,
                )
                await asyncio.sleep(delay)
        raise UpstreamUnavailable("Upstream retries exhausted", {"endpoint_class": endpoint_class})
