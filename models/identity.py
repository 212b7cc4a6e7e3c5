"""Guest identity and quota models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import EndpointClass


class UsageHistoryEntry(BaseModel):
    """One accounted call in an identity's usage log."""

    query: Optional[str] = Field(default=None, description="Caller query or resource id")
    endpoint_class: EndpointClass = Field(..., description="Endpoint class that was called")
    timestamp: datetime = Field(..., description="When the call was accounted")

    model_config = ConfigDict(use_enum_values=True)


class Identity(BaseModel):
    """Anonymous, self-issued guest principal."""

    id: str = Field(..., description="Stable identity identifier")
    display_name: str = Field(..., description="Human-readable guest label")
    quota_used: int = Field(default=0, ge=0, description="Calls accounted in the current window")
    quota_limit: int = Field(..., gt=0, description="Calls allowed per window")
    created_at: datetime = Field(..., description="Creation time")
    expires_at: datetime = Field(..., description="End of the current quota window")
    usage_history: List[UsageHistoryEntry] = Field(
        default_factory=list, description="Recent accounted calls, oldest first"
    )

    @property
    def quota_remaining(self) -> int:
        return max(0, self.quota_limit - self.quota_used)

    @property
    def has_quota_remaining(self) -> bool:
        return self.quota_used < self.quota_limit

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class QuotaSnapshot(BaseModel):
    """Point-in-time view of an identity's quota."""

    used: int = Field(..., ge=0, description="Calls used")
    limit: int = Field(..., gt=0, description="Calls allowed")
    remaining: int = Field(..., ge=0, description="Calls left")
    resets_at: datetime = Field(..., description="When the window resets")

    @classmethod
    def of(cls, identity: Identity) -> "QuotaSnapshot":
        return cls(
            used=identity.quota_used,
            limit=identity.quota_limit,
            remaining=identity.quota_remaining,
            resets_at=identity.expires_at,
        )


class IdentitySnapshot(BaseModel):
    """Identity view returned to callers alongside a token."""

    id: str = Field(..., description="Identity identifier")
    display_name: str = Field(..., description="Guest label")
    quota: QuotaSnapshot = Field(..., description="Current quota")
    created_at: datetime = Field(..., description="Creation time")
    expires_at: datetime = Field(..., description="Identity expiry")

    @classmethod
    def of(cls, identity: Identity) -> "IdentitySnapshot":
        return cls(
            id=identity.id,
            display_name=identity.display_name,
            quota=QuotaSnapshot.of(identity),
            created_at=identity.created_at,
            expires_at=identity.expires_at,
        )


class UsageReport(BaseModel):
    """Usage analytics for one identity."""

    identity: IdentitySnapshot = Field(..., description="Identity and quota")
    total_calls: int = Field(..., ge=0, description="Entries in the usage log")
    calls_by_endpoint: dict = Field(default_factory=dict, description="Log entries per endpoint class")
    recent: List[UsageHistoryEntry] = Field(default_factory=list, description="Most recent calls, newest first")
