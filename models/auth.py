"""Authentication results and token claims."""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from .identity import Identity, IdentitySnapshot


class TokenClaims(BaseModel):
    """Claims carried by a guest token."""

    sub: str = Field(..., description="Identity identifier")
    display_name: str = Field(..., description="Guest label")
    quota_used: int = Field(..., ge=0, description="Quota used at issuance")
    quota_limit: int = Field(..., gt=0, description="Quota limit at issuance")
    iat: datetime = Field(..., description="Issued-at time")
    exp: datetime = Field(..., description="Expiry time")
    jti: str = Field(..., description="Unique token identifier")


class Authenticated(BaseModel):
    """A request carrying a valid guest token."""

    kind: Literal["authenticated"] = "authenticated"
    identity: Identity
    claims: TokenClaims
    token: str
    renewed: bool = Field(default=False, description="Identity window was reset during verification")

    @property
    def is_authenticated(self) -> bool:
        return True


class Anonymous(BaseModel):
    """A request without a usable guest token."""

    kind: Literal["anonymous"] = "anonymous"
    reason: str = Field(default="missing", description="Why the caller is anonymous")

    @property
    def is_authenticated(self) -> bool:
        return False


AuthResult = Union[Authenticated, Anonymous]


class IssuedToken(BaseModel):
    """Token plus the identity it was issued for."""

    token: str
    identity: IdentitySnapshot
    expires_at: datetime
    session_id: Optional[str] = None
