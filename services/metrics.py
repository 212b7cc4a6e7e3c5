"""Prometheus metrics for the Guest Quota Gateway."""

import time
from typing import Any, Dict

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from config import ApplicationConfig

cache_lookups_total = Counter(
    "gateway_cache_lookups_total",
    "Response cache lookups",
    ["endpoint_class", "status"],
)

cache_invalidations_total = Counter(
    "gateway_cache_invalidations_total",
    "Cache entries removed by invalidation",
    ["scope"],
)

quota_consumed_total = Counter(
    "gateway_quota_consumed_total",
    "Quota units consumed by guest identities",
    ["endpoint_class"],
)

quota_rejections_total = Counter(
    "gateway_quota_rejections_total",
    "Calls rejected because the guest quota was exhausted",
    ["endpoint_class"],
)

identities_issued_total = Counter(
    "gateway_identities_issued_total",
    "Guest identities issued",
)

identity_renewals_total = Counter(
    "gateway_identity_renewals_total",
    "Guest identity renewals",
    ["mode"],
)

upstream_requests_total = Counter(
    "gateway_upstream_requests_total",
    "Upstream fetches",
    ["endpoint_class", "status"],
)

upstream_units_total = Counter(
    "gateway_upstream_units_total",
    "Declared upstream quota units spent",
    ["endpoint_class"],
)

upstream_request_seconds = Histogram(
    "gateway_upstream_request_seconds",
    "Upstream fetch latency",
    ["endpoint_class"],
)

sweep_removed_total = Counter(
    "gateway_sweep_removed_total",
    "Records removed by the reaper",
    ["collection"],
)


class MetricsService:
    """Exposes process metrics and uptime."""

    def __init__(self, config: ApplicationConfig) -> None:
        self.config = config
        self._start_time = time.time()

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self._start_time)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_prometheus_metrics(self) -> str:
        """Get Prometheus metrics in text exposition format."""
        return generate_latest().decode("utf-8")

    def get_service_info(self) -> Dict[str, Any]:
        return {
            "name": self.config.app_name,
            "version": self.config.app_version,
            "uptime_seconds": self.uptime_seconds,
        }
