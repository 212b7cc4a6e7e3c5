"""Per-identity quota ledger."""

from datetime import datetime
from typing import FrozenSet, Iterable, Optional

from config import ApplicationConfig
from models import EndpointClass, Identity, QuotaSnapshot, UsageHistoryEntry
from utils import Clock, QuotaExceeded, create_contextual_logger, utc_now

from .metrics import quota_consumed_total, quota_rejections_total
from .store import DocumentStore

COUNTABLE_ENDPOINTS: FrozenSet[str] = frozenset(e.value for e in EndpointClass)


class QuotaLedger:
    """Gates and accounts cost-bearing calls against an identity's limit."""

    def __init__(
        self,
        config: ApplicationConfig,
        store: DocumentStore,
        clock: Clock = utc_now,
        countable: Iterable[str] = COUNTABLE_ENDPOINTS,
    ) -> None:
        self.store = store
        self.clock = clock
        self.enforcement_enabled = config.quota_enforcement_enabled
        self.history_limit = config.usage_history_limit
        self.countable = frozenset(countable)
        self.logger = create_contextual_logger(__name__, service="quota_ledger")

    @staticmethod
    def has_remaining(identity: Identity) -> bool:
        return identity.quota_used < identity.quota_limit

    @staticmethod
    def snapshot(identity: Identity) -> QuotaSnapshot:
        return QuotaSnapshot.of(identity)

    def is_countable(self, endpoint_class: str) -> bool:
        """Only cost-bearing endpoint classes are counted, and only while enforcing."""
        return self.enforcement_enabled and endpoint_class in self.countable

    async def reset(self, identity_id: str, new_expires_at: datetime) -> Optional[Identity]:
        """Zero usage and move the window end, unconditionally."""
        return await self.store.reset_identity(identity_id, new_expires_at)

    async def reset_if_lapsed(
        self, identity_id: str, now: datetime, new_expires_at: datetime
    ) -> Optional[Identity]:
        """Zero usage and move the window end only if the window has already ended.

        Returns None when another request already renewed the window.
        """
        return await self.store.renew_identity_if_expired(identity_id, now, new_expires_at)

    async def consume(
        self,
        identity: Identity,
        cost: int = 1,
        query: Optional[str] = None,
        endpoint_class: Optional[str] = None,
    ) -> Identity:
        """Account ``cost`` against the identity in one conditional update.

        Returns the updated identity.

        Raises:
            QuotaExceeded: the increment would take usage above the limit.
        """
        entry = None
        if endpoint_class is not None:
            entry = UsageHistoryEntry(query=query, endpoint_class=endpoint_class, timestamp=self.clock())

        result = await self.store.consume_quota(identity.id, cost, entry, self.history_limit)
        if result.identity is None:
            # Identity vanished (reaped or deleted); the call goes uncounted.
            self.logger.warning("Quota consume skipped, identity not found", identity_id=identity.id)
            return identity

        current = result.identity
        if not result.applied:
            quota_rejections_total.labels(endpoint_class=endpoint_class or "unknown").inc()
            self.logger.warning(
                "Quota exceeded",
                identity_id=identity.id,
                quota_used=current.quota_used,
                quota_limit=current.quota_limit,
                endpoint_class=endpoint_class,
            )
            raise QuotaExceeded(current.quota_used, current.quota_limit, current.expires_at)

        quota_consumed_total.labels(endpoint_class=endpoint_class or "unknown").inc(cost)
        self.logger.debug(
            "Quota consumed",
            identity_id=identity.id,
            quota_used=current.quota_used,
            quota_limit=current.quota_limit,
        )
        return current
