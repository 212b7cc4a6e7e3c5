"""Revoked token records."""

import hashlib
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import RevocationReason


def token_digest(token: str) -> str:
    """Stable digest used to index a token without storing it as a key."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RevokedToken(BaseModel):
    """A token that must no longer authenticate."""

    token: str = Field(..., description="The revoked bearer token")
    identity_id: str = Field(..., description="Identity the token belonged to")
    reason: RevocationReason = Field(default=RevocationReason.LOGOUT, description="Why it was revoked")
    revoked_at: datetime = Field(..., description="Revocation time")
    expires_at: datetime = Field(..., description="The token's own signed expiry")

    model_config = ConfigDict(use_enum_values=True)

    @property
    def digest(self) -> str:
        return token_digest(self.token)
