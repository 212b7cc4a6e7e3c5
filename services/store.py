"""Document store abstraction for the Guest Quota Gateway.

The store holds four collections (identities, sessions, revoked tokens and
cache entries). Every cross-request coordination point is a single method here
so each backend can make it atomic: the in-memory backend never suspends
between a check and its write, and the Redis backend runs the conditional
updates as server-side scripts.
"""

import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Pattern

from models import CacheEntry, Identity, RevokedToken, Session, UsageHistoryEntry, token_digest


class ConsumeResult(NamedTuple):
    """Outcome of a conditional quota increment."""

    applied: bool
    identity: Optional[Identity]


class DocumentStore(ABC):
    """Atomic operations over the gateway's persisted collections."""

    async def connect(self) -> None:
        """Open backend connections."""

    async def close(self) -> None:
        """Release backend connections."""

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Whether the backend is reachable."""

    # Identities

    @abstractmethod
    async def insert_identity(self, identity: Identity) -> None:
        ...

    @abstractmethod
    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        ...

    @abstractmethod
    async def consume_quota(
        self,
        identity_id: str,
        cost: int,
        entry: Optional[UsageHistoryEntry],
        history_limit: int,
    ) -> ConsumeResult:
        """Increment usage by ``cost`` only if it stays within the limit.

        The usage entry is appended to the identity's bounded history in the
        same atomic step.
        """

    @abstractmethod
    async def renew_identity_if_expired(
        self, identity_id: str, now: datetime, new_expires_at: datetime
    ) -> Optional[Identity]:
        """Reset usage and extend expiry, only if the identity has lapsed.

        Returns the renewed identity, or None when the condition did not hold.
        """

    @abstractmethod
    async def reset_identity(self, identity_id: str, new_expires_at: datetime) -> Optional[Identity]:
        """Unconditionally reset usage and set a new expiry."""

    @abstractmethod
    async def delete_identity(self, identity_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_expired_identities(self, now: datetime) -> int:
        ...

    @abstractmethod
    async def count_identities(self) -> int:
        ...

    # Sessions

    @abstractmethod
    async def insert_session(self, session: Session) -> None:
        ...

    @abstractmethod
    async def list_sessions(self, identity_id: str) -> List[Session]:
        ...

    @abstractmethod
    async def count_active_sessions(self, fingerprint: str, now: datetime) -> int:
        """Active, unexpired sessions carrying a fingerprint."""

    @abstractmethod
    async def refresh_active_session(
        self,
        identity_id: str,
        expires_at: datetime,
        now: datetime,
        token: Optional[str] = None,
    ) -> Optional[Session]:
        """Update the identity's most recent active session.

        Any other active session of the identity is deactivated. Returns None
        if the identity has no active session.
        """

    @abstractmethod
    async def deactivate_sessions(self, identity_id: str, now: datetime) -> int:
        ...

    @abstractmethod
    async def delete_expired_sessions(self, now: datetime) -> int:
        ...

    # Revoked tokens

    @abstractmethod
    async def insert_revoked_token(self, record: RevokedToken) -> bool:
        """Insert once. Returns False if the token was already recorded."""

    @abstractmethod
    async def is_token_revoked(self, token: str, now: datetime) -> bool:
        ...

    @abstractmethod
    async def delete_expired_revoked_tokens(self, now: datetime) -> int:
        ...

    # Cache entries

    @abstractmethod
    async def upsert_cache_entry(self, entry: CacheEntry) -> None:
        ...

    @abstractmethod
    async def hit_cache_entry(self, key: str, now: datetime) -> Optional[CacheEntry]:
        """Return a live entry after counting the hit, or None on miss."""

    @abstractmethod
    async def list_cache_entries(self) -> List[CacheEntry]:
        ...

    @abstractmethod
    async def delete_cache_entries(self, pattern: Pattern[str]) -> int:
        """Delete entries whose whole key matches ``pattern``."""

    @abstractmethod
    async def delete_cache_class(self, endpoint_class: str) -> int:
        ...

    @abstractmethod
    async def delete_all_cache_entries(self) -> int:
        ...

    @abstractmethod
    async def delete_expired_cache_entries(self, now: datetime) -> int:
        ...


class InMemoryDocumentStore(DocumentStore):
    """Process-local store.

    No method awaits between reading and writing, so every operation is atomic
    with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._identities: Dict[str, Identity] = {}
        self._sessions: Dict[str, Session] = {}
        self._revoked: Dict[str, RevokedToken] = {}
        self._cache: Dict[str, CacheEntry] = {}

    async def is_healthy(self) -> bool:
        return True

    async def insert_identity(self, identity: Identity) -> None:
        self._identities[identity.id] = identity.model_copy(deep=True)

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        identity = self._identities.get(identity_id)
        return identity.model_copy(deep=True) if identity else None

    async def consume_quota(
        self,
        identity_id: str,
        cost: int,
        entry: Optional[UsageHistoryEntry],
        history_limit: int,
    ) -> ConsumeResult:
        identity = self._identities.get(identity_id)
        if identity is None:
            return ConsumeResult(False, None)
        if identity.quota_used + cost > identity.quota_limit:
            return ConsumeResult(False, identity.model_copy(deep=True))

        identity.quota_used += cost
        if entry is not None:
            identity.usage_history.append(entry)
            if len(identity.usage_history) > history_limit:
                del identity.usage_history[: len(identity.usage_history) - history_limit]
        return ConsumeResult(True, identity.model_copy(deep=True))

    async def renew_identity_if_expired(
        self, identity_id: str, now: datetime, new_expires_at: datetime
    ) -> Optional[Identity]:
        identity = self._identities.get(identity_id)
        if identity is None or not identity.is_expired(now):
            return None
        identity.quota_used = 0
        identity.expires_at = new_expires_at
        return identity.model_copy(deep=True)

    async def reset_identity(self, identity_id: str, new_expires_at: datetime) -> Optional[Identity]:
        identity = self._identities.get(identity_id)
        if identity is None:
            return None
        identity.quota_used = 0
        identity.expires_at = new_expires_at
        return identity.model_copy(deep=True)

    async def delete_identity(self, identity_id: str) -> bool:
        return self._identities.pop(identity_id, None) is not None

    async def delete_expired_identities(self, now: datetime) -> int:
        expired = [i for i, identity in self._identities.items() if identity.is_expired(now)]
        for identity_id in expired:
            del self._identities[identity_id]
        return len(expired)

    async def count_identities(self) -> int:
        return len(self._identities)

    async def insert_session(self, session: Session) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def list_sessions(self, identity_id: str) -> List[Session]:
        return [
            s.model_copy(deep=True) for s in self._sessions.values() if s.identity_id == identity_id
        ]

    async def count_active_sessions(self, fingerprint: str, now: datetime) -> int:
        return sum(
            1 for s in self._sessions.values() if s.fingerprint == fingerprint and s.is_live(now)
        )

    async def refresh_active_session(
        self,
        identity_id: str,
        expires_at: datetime,
        now: datetime,
        token: Optional[str] = None,
    ) -> Optional[Session]:
        active = sorted(
            (s for s in self._sessions.values() if s.identity_id == identity_id and s.is_active),
            key=lambda s: s.last_activity_at,
            reverse=True,
        )
        if not active:
            return None

        current, stale = active[0], active[1:]
        for session in stale:
            session.is_active = False
            session.deactivated_at = now
        if token is not None:
            current.token = token
        current.expires_at = expires_at
        current.last_activity_at = now
        return current.model_copy(deep=True)

    async def deactivate_sessions(self, identity_id: str, now: datetime) -> int:
        count = 0
        for session in self._sessions.values():
            if session.identity_id == identity_id and session.is_active:
                session.is_active = False
                session.deactivated_at = now
                count += 1
        return count

    async def delete_expired_sessions(self, now: datetime) -> int:
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for session_id in expired:
            del self._sessions[session_id]
        return len(expired)

    async def insert_revoked_token(self, record: RevokedToken) -> bool:
        digest = record.digest
        if digest in self._revoked:
            return False
        self._revoked[digest] = record.model_copy(deep=True)
        return True

    async def is_token_revoked(self, token: str, now: datetime) -> bool:
        record = self._revoked.get(token_digest(token))
        return record is not None and record.expires_at > now

    async def delete_expired_revoked_tokens(self, now: datetime) -> int:
        expired = [d for d, r in self._revoked.items() if r.expires_at <= now]
        for digest in expired:
            del self._revoked[digest]
        return len(expired)

    async def upsert_cache_entry(self, entry: CacheEntry) -> None:
        self._cache[entry.key] = entry.model_copy(deep=True)

    async def hit_cache_entry(self, key: str, now: datetime) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None or entry.is_expired(now):
            return None
        entry.hits += 1
        entry.last_accessed_at = now
        return entry.model_copy(deep=True)

    async def list_cache_entries(self) -> List[CacheEntry]:
        return [entry.model_copy(deep=True) for entry in self._cache.values()]

    async def delete_cache_entries(self, pattern: Pattern[str]) -> int:
        matched = [key for key in self._cache if pattern.fullmatch(key)]
        for key in matched:
            del self._cache[key]
        return len(matched)

    async def delete_cache_class(self, endpoint_class: str) -> int:
        matched = [key for key, entry in self._cache.items() if entry.endpoint_class == endpoint_class]
        for key in matched:
            del self._cache[key]
        return len(matched)

    async def delete_all_cache_entries(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        return count

    async def delete_expired_cache_entries(self, now: datetime) -> int:
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        return len(expired)


def compile_key_pattern(pattern: str) -> Pattern[str]:
    """Compile an exact key or ``*`` glob into a full-match regex."""
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
