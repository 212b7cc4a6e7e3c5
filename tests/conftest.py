"""Test utilities and fixtures for Guest Quota Gateway tests."""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import ApplicationConfig
from models import ClientContext, EndpointClass
from services import (
    FetchResult,
    IdentityManager,
    InMemoryDocumentStore,
    QuotaLedger,
    ResponseCache,
    RevocationLedger,
    ServiceContainer,
    TokenCodec,
    build_services,
)


class FrozenClock:
    """Controllable clock; call it to read the current time."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubFetcher:
    """Upstream stand-in that records calls and returns canned payloads."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.error = error

    async def fetch(self, endpoint_class: str, params: Dict[str, Any]) -> FetchResult:
        self.calls.append((endpoint_class, dict(params)))
        if self.error is not None:
            raise self.error
        cost = 100 if endpoint_class == EndpointClass.SEARCH.value else 1
        payload = {
            "kind": f"youtube#{endpoint_class}ListResponse",
            "items": [{"id": f"{endpoint_class}-{len(self.calls)}"}],
            "params": params,
        }
        return FetchResult(payload=payload, cost=cost)


@pytest.fixture(scope="session")
def mock_config() -> ApplicationConfig:
    """Create a test configuration from environment variables."""
    os.environ["STORE_BACKEND"] = "memory"
    os.environ["JWT_SECRET"] = "test-secret-key-for-guest-tokens-0123456789"
    os.environ["TOKEN_EXPIRY_LEEWAY_SECONDS"] = "0"
    os.environ["YOUTUBE_API_KEY"] = "test-api-key"
    os.environ["GUEST_QUOTA_LIMIT"] = "100"
    os.environ["LOG_LEVEL"] = "DEBUG"

    config = ApplicationConfig()
    # Warming and retries without real pauses
    return config.model_copy(
        update={
            "cache_warm_delay_seconds": 0.0,
            "cache_warm_item_delay_seconds": 0.0,
            "upstream_retry_base_delay": 0.0,
        }
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def client_context() -> ClientContext:
    return ClientContext(ip_address="203.0.113.7", user_agent="pytest-agent/1.0")


@pytest.fixture
def codec(mock_config: ApplicationConfig, clock: FrozenClock) -> TokenCodec:
    return TokenCodec(mock_config, clock=clock)


@pytest.fixture
def revocations(store: InMemoryDocumentStore, clock: FrozenClock) -> RevocationLedger:
    return RevocationLedger(store, clock=clock)


@pytest.fixture
def quota_ledger(mock_config: ApplicationConfig, store: InMemoryDocumentStore, clock: FrozenClock) -> QuotaLedger:
    return QuotaLedger(mock_config, store, clock=clock)


@pytest.fixture
def identity_manager(
    mock_config: ApplicationConfig,
    store: InMemoryDocumentStore,
    codec: TokenCodec,
    revocations: RevocationLedger,
    quota_ledger: QuotaLedger,
    clock: FrozenClock,
) -> IdentityManager:
    return IdentityManager(mock_config, store, codec, revocations, quota_ledger, clock=clock)


@pytest.fixture
def response_cache(mock_config: ApplicationConfig, store: InMemoryDocumentStore, clock: FrozenClock) -> ResponseCache:
    return ResponseCache(mock_config, store, clock=clock)


@pytest.fixture
def services(
    mock_config: ApplicationConfig,
    store: InMemoryDocumentStore,
    fetcher: StubFetcher,
    clock: FrozenClock,
) -> ServiceContainer:
    """Fully wired services over the in-memory store and stub upstream."""
    return build_services(mock_config, store=store, fetcher=fetcher, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def test_client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client for an app wired to test services."""
    from main import create_app

    app = create_app(services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
