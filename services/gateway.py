"""Per-request control flow: identity, then quota, then cache, then upstream."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import Authenticated, AuthResult, CacheStatus, QuotaSnapshot
from utils import StoreUnavailable, create_contextual_logger

from .identity_manager import IdentityManager
from .quota import QuotaLedger
from .response_cache import ResponseCache
from .upstream import UpstreamFetcher


class GatewayResponse(BaseModel):
    """Payload plus the metadata the routing layer exposes as headers."""

    payload: Any
    cache_status: CacheStatus
    cache_key: str
    authenticated: bool = False
    countable: bool = False
    quota: Optional[QuotaSnapshot] = None
    upstream_cost: int = Field(default=0, ge=0)

    model_config = ConfigDict(use_enum_values=True)


class RequestGateway:
    """Composes the identity manager, quota ledger, cache and upstream."""

    def __init__(
        self,
        identities: IdentityManager,
        quota: QuotaLedger,
        cache: ResponseCache,
        fetcher: UpstreamFetcher,
    ) -> None:
        self.identities = identities
        self.quota = quota
        self.cache = cache
        self.fetcher = fetcher
        self.logger = create_contextual_logger(__name__, service="request_gateway")

    async def handle(
        self,
        token: Optional[str],
        endpoint_class: str,
        params: Dict[str, Any],
        query: Optional[str] = None,
    ) -> GatewayResponse:
        """Serve one cost-bearing request.

        Raises:
            QuotaExceeded: the caller's identity has no quota left.
            UpstreamError: the upstream fetch failed on a cache miss.
        """
        auth = await self.identities.verify(token)
        return await self.handle_resolved(auth, endpoint_class, params, query)

    async def handle_resolved(
        self,
        auth: AuthResult,
        endpoint_class: str,
        params: Dict[str, Any],
        query: Optional[str] = None,
    ) -> GatewayResponse:
        quota: Optional[QuotaSnapshot] = None
        countable = False

        if isinstance(auth, Authenticated):
            identity = auth.identity
            if self.quota.is_countable(endpoint_class):
                try:
                    identity = await self.quota.consume(identity, 1, query=query, endpoint_class=endpoint_class)
                    countable = True
                except StoreUnavailable as e:
                    # Unreachable ledger: the call proceeds un-counted.
                    self.logger.warning(
                        "Quota ledger unavailable, serving call un-counted",
                        identity_id=identity.id,
                        error=str(e),
                    )
            quota = QuotaSnapshot.of(identity)

        outcome = await self.cache.get_or_fetch(endpoint_class, params, self.fetcher)

        return GatewayResponse(
            payload=outcome.payload,
            cache_status=outcome.status,
            cache_key=outcome.key,
            authenticated=isinstance(auth, Authenticated),
            countable=countable,
            quota=quota,
            upstream_cost=outcome.upstream_cost,
        )
