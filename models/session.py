"""Session and client context models."""

import hashlib
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ClientContext(BaseModel):
    """Caller metadata captured from the inbound request."""

    ip_address: str = Field(default="unknown", description="Client address")
    user_agent: str = Field(default="", description="Client user agent")

    @property
    def fingerprint(self) -> str:
        """Abuse-detection fingerprint derived from address and agent."""
        raw = f"{self.ip_address}:{self.user_agent}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class Session(BaseModel):
    """Binding of an identity to its current bearer token."""

    id: str = Field(..., description="Session identifier")
    identity_id: str = Field(..., description="Owning identity")
    token: str = Field(..., description="Current bearer token")
    is_active: bool = Field(default=True, description="Whether the session is authoritative")
    ip_address: str = Field(default="unknown", description="Client address at issuance")
    user_agent: str = Field(default="", description="Client agent at issuance")
    fingerprint: str = Field(..., description="Abuse-detection fingerprint")
    created_at: datetime = Field(..., description="Creation time")
    last_activity_at: datetime = Field(..., description="Last renewal or verification")
    expires_at: datetime = Field(..., description="Mirrors the identity expiry")
    deactivated_at: Optional[datetime] = Field(default=None, description="When the session was deactivated")

    def is_live(self, now: datetime) -> bool:
        return self.is_active and self.expires_at > now
