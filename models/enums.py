"""Enumeration types for Guest Quota Gateway models."""

from enum import Enum


class EndpointClass(str, Enum):
    """Upstream endpoint categories, used for cache TTLs and bulk invalidation."""

    SEARCH = "search"
    VIDEO = "video"
    CHANNEL = "channel"
    TRENDING = "trending"


class RevocationReason(str, Enum):
    """Why a token was revoked."""

    LOGOUT = "logout"
    SECURITY = "security"
    EXPIRED = "expired"
    REVOKED = "revoked"


class CacheStatus(str, Enum):
    """Outcome of a cache lookup."""

    HIT = "HIT"
    MISS = "MISS"
