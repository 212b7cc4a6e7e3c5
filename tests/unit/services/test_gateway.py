"""Unit tests for the request gateway."""

from unittest.mock import AsyncMock

import pytest

from models import Anonymous, CacheStatus
from services import ServiceContainer
from utils import NotFound, QuotaExceeded, StoreUnavailable


class TestRequestGateway:
    """Test cases for RequestGateway."""

    @pytest.mark.asyncio
    async def test_authenticated_call_is_counted(self, services: ServiceContainer, client_context) -> None:
        issued = await services.identities.create_identity(client_context)

        response = await services.gateway.handle(issued.token, "search", {"q": "react"}, query="react")

        assert response.authenticated is True
        assert response.countable is True
        assert response.cache_status == CacheStatus.MISS.value
        assert response.upstream_cost == 100
        assert (response.quota.used, response.quota.remaining) == (1, 99)

    @pytest.mark.asyncio
    async def test_cache_hit_still_counts(self, services: ServiceContainer, fetcher, client_context) -> None:
        issued = await services.identities.create_identity(client_context)
        await services.gateway.handle(issued.token, "video", {"video_id": "dQw4w9WgXcQ"})

        response = await services.gateway.handle(issued.token, "video", {"video_id": "dQw4w9WgXcQ"})

        assert response.cache_status == CacheStatus.HIT.value
        assert response.cache_key == 'video:{"video_id":"dQw4w9WgXcQ"}'
        assert response.quota.used == 2
        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_anonymous_call_is_not_counted(self, services: ServiceContainer) -> None:
        response = await services.gateway.handle(None, "trending", {})

        assert response.authenticated is False
        assert response.countable is False
        assert response.quota is None

    @pytest.mark.asyncio
    async def test_quota_exhaustion_short_circuits(
        self, services: ServiceContainer, store, fetcher, client_context
    ) -> None:
        issued = await services.identities.create_identity(client_context)
        identity = await store.get_identity(issued.identity.id)
        await store.consume_quota(identity.id, identity.quota_limit, None, 10)

        with pytest.raises(QuotaExceeded) as exc_info:
            await services.gateway.handle(issued.token, "search", {"q": "react"})

        assert exc_info.value.details["quotaUsed"] == 100
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_quota_store_failure_serves_uncounted(self, services: ServiceContainer, client_context) -> None:
        issued = await services.identities.create_identity(client_context)
        auth = await services.identities.verify(issued.token)
        services.quota.store = AsyncMock()
        services.quota.store.consume_quota.side_effect = StoreUnavailable("consume_quota")

        response = await services.gateway.handle_resolved(auth, "search", {"q": "react"})

        assert response.authenticated is True
        assert response.countable is False
        assert response.quota.used == 0

    @pytest.mark.asyncio
    async def test_upstream_not_found_propagates(self, services: ServiceContainer, fetcher) -> None:
        fetcher.error = NotFound()

        with pytest.raises(NotFound):
            await services.gateway.handle_resolved(Anonymous(), "video", {"video_id": "missing0000"})

    @pytest.mark.asyncio
    async def test_enforcement_disabled(self, services: ServiceContainer, client_context) -> None:
        issued = await services.identities.create_identity(client_context)
        services.quota.enforcement_enabled = False

        response = await services.gateway.handle(issued.token, "search", {"q": "react"})

        assert response.countable is False
        assert response.quota.used == 0
