"""Service layer for the Guest Quota Gateway."""

from .container import ServiceContainer, build_services, create_store
from .gateway import GatewayResponse, RequestGateway
from .identity_manager import IdentityManager
from .metrics import MetricsService
from .quota import QuotaLedger
from .reaper import Reaper
from .redis_store import RedisDocumentStore
from .response_cache import ResponseCache
from .revocation import RevocationLedger
from .store import ConsumeResult, DocumentStore, InMemoryDocumentStore, compile_key_pattern
from .token_codec import TokenCodec
from .upstream import FetchResult, RetryingFetcher, UpstreamFetcher, YouTubeDataClient

__all__ = [
    "ServiceContainer",
    "build_services",
    "create_store",
    "GatewayResponse",
    "RequestGateway",
    "IdentityManager",
    "MetricsService",
    "QuotaLedger",
    "Reaper",
    "RedisDocumentStore",
    "ResponseCache",
    "RevocationLedger",
    "ConsumeResult",
    "DocumentStore",
    "InMemoryDocumentStore",
    "compile_key_pattern",
    "TokenCodec",
    "FetchResult",
    "RetryingFetcher",
    "UpstreamFetcher",
    "YouTubeDataClient",
]
