"""Data models for the Guest Quota Gateway.

This module contains all Pydantic models used throughout the application,
ensuring strict type safety and runtime validation."""

# Import all enums
from .enums import CacheStatus, EndpointClass, RevocationReason

# Import identity models
from .identity import Identity, IdentitySnapshot, QuotaSnapshot, UsageHistoryEntry, UsageReport

# Import session models
from .session import ClientContext, Session

# Import revocation models
from .revocation import RevokedToken, token_digest

# Import cache models
from .cache import (
    CacheEntry,
    CacheStats,
    EndpointStats,
    FetchOutcome,
    PopularEntry,
    SweepResult,
    WarmReport,
    WarmSeed,
)

# Import auth models
from .auth import Anonymous, Authenticated, AuthResult, IssuedToken, TokenClaims

__all__ = [
    # Enums
    "CacheStatus",
    "EndpointClass",
    "RevocationReason",
    # Identity models
    "Identity",
    "IdentitySnapshot",
    "QuotaSnapshot",
    "UsageHistoryEntry",
    "UsageReport",
    # Session models
    "ClientContext",
    "Session",
    # Revocation models
    "RevokedToken",
    "token_digest",
    # Cache models
    "CacheEntry",
    "CacheStats",
    "EndpointStats",
    "FetchOutcome",
    "PopularEntry",
    "SweepResult",
    "WarmReport",
    "WarmSeed",
    # Auth models
    "Anonymous",
    "Authenticated",
    "AuthResult",
    "IssuedToken",
    "TokenClaims",
]
