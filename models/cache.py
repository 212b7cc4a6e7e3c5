"""Response cache models."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import CacheStatus, EndpointClass


class CacheEntry(BaseModel):
    """A cached upstream response."""

    key: str = Field(..., description="Canonical cache key")
    value: Any = Field(..., description="Opaque JSON payload")
    endpoint_class: EndpointClass = Field(..., description="Endpoint class of the payload")
    expires_at: datetime = Field(..., description="Entry expiry")
    hits: int = Field(default=0, ge=0, description="Reads served since last write")
    created_at: datetime = Field(..., description="Last write time")
    last_accessed_at: datetime = Field(..., description="Last read or write time")

    model_config = ConfigDict(use_enum_values=True)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class EndpointStats(BaseModel):
    """Active-entry statistics for one endpoint class."""

    count: int = Field(default=0, ge=0)
    total_hits: int = Field(default=0, ge=0)
    avg_hits: float = Field(default=0.0, ge=0)


class CacheStats(BaseModel):
    """Aggregate cache statistics."""

    total_entries: int = Field(..., ge=0)
    active_entries: int = Field(..., ge=0)
    expired_entries: int = Field(..., ge=0)
    total_hits: int = Field(..., ge=0)
    avg_hits_per_entry: float = Field(..., ge=0)
    hit_ratio: float = Field(..., ge=0, description="Hits served per stored entry")
    by_endpoint: Dict[str, EndpointStats] = Field(default_factory=dict)


class PopularEntry(BaseModel):
    """A frequently read cache entry."""

    key: str
    endpoint_class: str
    hits: int
    last_accessed_at: datetime
    expires_at: datetime


class WarmSeed(BaseModel):
    """One request the cache should be pre-populated with."""

    endpoint_class: EndpointClass
    params: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(use_enum_values=True)


class WarmReport(BaseModel):
    """Outcome of a warming batch."""

    attempted: int = 0
    stored: int = 0
    failed: int = 0
    failed_keys: List[str] = Field(default_factory=list)


class FetchOutcome(BaseModel):
    """Result of a cache-aware fetch."""

    key: str
    status: CacheStatus
    payload: Any
    upstream_cost: int = 0

    model_config = ConfigDict(use_enum_values=True)


class SweepResult(BaseModel):
    """Records removed by one reaper sweep."""

    identities_removed: int = 0
    sessions_removed: int = 0
    revoked_tokens_removed: int = 0
    cache_entries_removed: int = 0
    duration_seconds: Optional[float] = None
