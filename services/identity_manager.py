"""Identity and session management for anonymous guests.

Issues, verifies, renews and revokes self-issued guest identities. Verification
never raises: every failure mode collapses into ``Anonymous`` so a broken token
or an unhealthy store degrades a caller to un-counted anonymous access instead
of ending the request.
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional, Tuple

from config import ApplicationConfig
from models import (
    Anonymous,
    Authenticated,
    AuthResult,
    ClientContext,
    Identity,
    IdentitySnapshot,
    IssuedToken,
    RevocationReason,
    Session,
    UsageReport,
)
from utils import (
    AbuseDetected,
    AuthenticationRequired,
    Clock,
    StoreUnavailable,
    TokenError,
    TokenExpired,
    create_contextual_logger,
    utc_now,
)

from .metrics import identities_issued_total, identity_renewals_total
from .quota import QuotaLedger
from .revocation import RevocationLedger
from .store import DocumentStore
from .token_codec import TokenCodec


class IdentityManager:
    """Owns the Identity, Session and RevokedToken lifecycles."""

    def __init__(
        self,
        config: ApplicationConfig,
        store: DocumentStore,
        codec: TokenCodec,
        revocations: RevocationLedger,
        quota: QuotaLedger,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.codec = codec
        self.revocations = revocations
        self.quota = quota
        self.clock = clock
        self.lifetime = timedelta(hours=config.identity_lifetime_hours)
        self.default_quota_limit = config.default_quota_limit
        self.abuse_threshold = config.max_active_sessions_per_fingerprint
        self.logger = create_contextual_logger(__name__, service="identity_manager")

    def _new_session(self, identity: Identity, token: str, client: ClientContext, now: datetime) -> Session:
        return Session(
            id=str(uuid.uuid4()),
            identity_id=identity.id,
            token=token,
            is_active=True,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            fingerprint=client.fingerprint,
            created_at=now,
            last_activity_at=now,
            expires_at=identity.expires_at,
        )

    async def create_identity(self, client: ClientContext) -> IssuedToken:
        """Issue a fresh guest identity, its token and an active session.

        Raises:
            AbuseDetected: the client fingerprint already holds too many active sessions.
        """
        now = self.clock()
        fingerprint = client.fingerprint

        active_sessions = await self.store.count_active_sessions(fingerprint, now)
        if active_sessions >= self.abuse_threshold:
            self.logger.warning(
                "Guest issuance refused for fingerprint",
                fingerprint=fingerprint[:16],
                active_sessions=active_sessions,
                threshold=self.abuse_threshold,
            )
            raise AbuseDetected(active_sessions, self.abuse_threshold)

        identity_id = str(uuid.uuid4())
        identity = Identity(
            id=identity_id,
            display_name=f"Guest_{identity_id[:8]}",
            quota_used=0,
            quota_limit=self.default_quota_limit,
            created_at=now,
            expires_at=now + self.lifetime,
        )
        await self.store.insert_identity(identity)

        token, claims = self.codec.issue(identity)
        session = self._new_session(identity, token, client, now)
        await self.store.insert_session(session)

        identities_issued_total.inc()
        self.logger.info(
            "Guest identity issued",
            identity_id=identity.id,
            session_id=session.id,
            expires_at=identity.expires_at.isoformat(),
        )
        return IssuedToken(
            token=token,
            identity=IdentitySnapshot.of(identity),
            expires_at=claims.exp,
            session_id=session.id,
        )

    async def verify(self, token: Optional[str]) -> AuthResult:
        """Resolve a bearer token into an identity, or Anonymous."""
        if not token:
            return Anonymous(reason="missing")

        if await self.revocations.is_revoked(token):
            return Anonymous(reason="revoked")

        try:
            claims = self.codec.verify(token)
        except TokenExpired:
            return Anonymous(reason="expired")
        except TokenError:
            return Anonymous(reason="invalid")

        try:
            identity = await self.store.get_identity(claims.sub)
            if identity is None:
                return Anonymous(reason="unknown_identity")

            renewed = False
            now = self.clock()
            if identity.is_expired(now):
                identity, renewed = await self._auto_renew(identity, now)
                if identity is None:
                    return Anonymous(reason="unknown_identity")
        except StoreUnavailable as e:
            self.logger.warning("Identity lookup failed, treating caller as anonymous", error=str(e))
            return Anonymous(reason="store_unavailable")

        return Authenticated(identity=identity, claims=claims, token=token, renewed=renewed)

    async def _auto_renew(self, identity: Identity, now: datetime) -> Tuple[Optional[Identity], bool]:
        """Reset a lapsed identity's window with one conditional update.

        Concurrent requests race on the condition; exactly one wins and the
        rest re-read the winner's state.
        """
        new_expires_at = now + self.lifetime
        renewed = await self.quota.reset_if_lapsed(identity.id, now, new_expires_at)
        if renewed is None:
            return await self.store.get_identity(identity.id), False

        identity_renewals_total.labels(mode="auto").inc()
        self.logger.info(
            "Lapsed guest identity renewed",
            identity_id=identity.id,
            previous_expiry=identity.expires_at.isoformat(),
            expires_at=new_expires_at.isoformat(),
        )
        try:
            await self.store.refresh_active_session(identity.id, new_expires_at, now)
        except StoreUnavailable as e:
            self.logger.warning("Session refresh after renewal failed", identity_id=identity.id, error=str(e))
        return renewed, True

    async def _require_identity(self, token: Optional[str]) -> Authenticated:
        auth = await self.verify(token)
        if not isinstance(auth, Authenticated):
            raise AuthenticationRequired("Valid guest token required", {"reason": auth.reason})
        return auth

    async def renew(self, token: Optional[str], client: ClientContext) -> IssuedToken:
        """Reset quota, extend the window and re-sign.

        The identity's single active session takes the new token.
        """
        auth = await self._require_identity(token)
        now = self.clock()

        identity = await self.quota.reset(auth.identity.id, now + self.lifetime)
        if identity is None:
            raise AuthenticationRequired("Guest identity no longer exists")

        new_token, claims = self.codec.issue(identity)
        session = await self.store.refresh_active_session(identity.id, identity.expires_at, now, token=new_token)
        if session is None:
            session = self._new_session(identity, new_token, client, now)
            await self.store.insert_session(session)

        identity_renewals_total.labels(mode="explicit").inc()
        self.logger.info(
            "Guest identity refreshed",
            identity_id=identity.id,
            session_id=session.id,
            expires_at=identity.expires_at.isoformat(),
        )
        return IssuedToken(
            token=new_token,
            identity=IdentitySnapshot.of(identity),
            expires_at=claims.exp,
            session_id=session.id,
        )

    async def revoke(self, token: Optional[str], reason: RevocationReason = RevocationReason.LOGOUT) -> None:
        """Deactivate the identity's sessions and revoke the token for as long as it verifies."""
        auth = await self._require_identity(token)
        now = self.clock()

        deactivated = await self.store.deactivate_sessions(auth.identity.id, now)
        await self.revocations.revoke(auth.token, auth.identity.id, self.codec.accepted_until(auth.claims), reason)
        self.logger.info(
            "Guest logged out",
            identity_id=auth.identity.id,
            sessions_deactivated=deactivated,
        )

    def usage(self, identity: Identity, recent: int = 10) -> UsageReport:
        """Usage analytics for an identity. Not quota-counted."""
        by_endpoint = Counter(entry.endpoint_class for entry in identity.usage_history)
        return UsageReport(
            identity=IdentitySnapshot.of(identity),
            total_calls=len(identity.usage_history),
            calls_by_endpoint=dict(by_endpoint),
            recent=list(reversed(identity.usage_history))[:recent],
        )
