"""Revocation ledger for guest tokens."""

from datetime import datetime

from models import RevocationReason, RevokedToken
from utils import Clock, StoreUnavailable, create_contextual_logger, utc_now

from .store import DocumentStore


class RevocationLedger:
    """Records revoked tokens until their natural expiry."""

    def __init__(self, store: DocumentStore, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock
        self.logger = create_contextual_logger(__name__, service="revocation_ledger")

    async def revoke(
        self,
        token: str,
        identity_id: str,
        expires_at: datetime,
        reason: RevocationReason = RevocationReason.LOGOUT,
    ) -> bool:
        """Record a revocation. Returns False if the token was already revoked."""
        record = RevokedToken(
            token=token,
            identity_id=identity_id,
            reason=reason,
            revoked_at=self.clock(),
            expires_at=expires_at,
        )
        inserted = await self.store.insert_revoked_token(record)
        self.logger.info(
            "Token revoked" if inserted else "Token already revoked",
            identity_id=identity_id,
            reason=record.reason,
            expires_at=expires_at.isoformat(),
        )
        return inserted

    async def is_revoked(self, token: str) -> bool:
        """Whether the token is revoked and not yet past its own expiry.

        A store failure answers False so authentication keeps working.
        """
        try:
            return await self.store.is_token_revoked(token, self.clock())
        except StoreUnavailable as e:
            self.logger.warning("Revocation lookup failed, treating token as not revoked", error=str(e))
            return False

    async def sweep(self) -> int:
        return await self.store.delete_expired_revoked_tokens(self.clock())
