"""Explicit construction of the gateway's services."""

from dataclasses import dataclass
from typing import Optional

from config import ApplicationConfig
from utils import Clock, create_contextual_logger, utc_now

from .gateway import RequestGateway
from .identity_manager import IdentityManager
from .metrics import MetricsService
from .quota import QuotaLedger
from .reaper import Reaper
from .redis_store import RedisDocumentStore
from .response_cache import ResponseCache
from .revocation import RevocationLedger
from .store import DocumentStore, InMemoryDocumentStore
from .token_codec import TokenCodec
from .upstream import RetryingFetcher, UpstreamFetcher, YouTubeDataClient

logger = create_contextual_logger(__name__, service="container")


@dataclass
class ServiceContainer:
    """Every long-lived service, built once at startup."""

    config: ApplicationConfig
    store: DocumentStore
    codec: TokenCodec
    revocations: RevocationLedger
    quota: QuotaLedger
    identities: IdentityManager
    cache: ResponseCache
    reaper: Reaper
    fetcher: UpstreamFetcher
    gateway: RequestGateway
    metrics: MetricsService
    upstream_client: Optional[YouTubeDataClient] = None

    async def start(self) -> None:
        await self.store.connect()
        if self.upstream_client is not None:
            await self.upstream_client.start()
        self.reaper.start()
        if self.config.cache_warm_on_startup:
            self.cache.start_warming(self.fetcher)
        logger.info("Services started", store_backend=type(self.store).__name__)

    async def stop(self) -> None:
        await self.reaper.stop()
        await self.cache.shutdown()
        if self.upstream_client is not None:
            await self.upstream_client.stop()
        await self.store.close()
        logger.info("Services stopped")


def create_store(config: ApplicationConfig) -> DocumentStore:
    if config.store_backend == "memory":
        return InMemoryDocumentStore()
    return RedisDocumentStore(config)


def build_services(
    config: ApplicationConfig,
    store: Optional[DocumentStore] = None,
    fetcher: Optional[UpstreamFetcher] = None,
    clock: Clock = utc_now,
) -> ServiceContainer:
    """Wire services together. ``store`` and ``fetcher`` override the configured backends."""
    store = store if store is not None else create_store(config)

    upstream_client = None
    if fetcher is None:
        upstream_client = YouTubeDataClient(config)
        fetcher = RetryingFetcher.from_config(upstream_client, config)

    codec = TokenCodec(config, clock=clock)
    revocations = RevocationLedger(store, clock=clock)
    quota = QuotaLedger(config, store, clock=clock)
    identities = IdentityManager(config, store, codec, revocations, quota, clock=clock)
    cache = ResponseCache(config, store, clock=clock)

    return ServiceContainer(
        config=config,
        store=store,
        codec=codec,
        revocations=revocations,
        quota=quota,
        identities=identities,
        cache=cache,
        reaper=Reaper(config, store, clock=clock),
        fetcher=fetcher,
        gateway=RequestGateway(identities, quota, cache, fetcher),
        metrics=MetricsService(config),
        upstream_client=upstream_client,
    )
