"""Unit tests for the Redis document store with a mocked client."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from models import RevokedToken, UsageHistoryEntry
from services import RedisDocumentStore
from utils import StoreUnavailable, to_epoch_ms

NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def redis_store(mock_config) -> RedisDocumentStore:
    """Store with a mocked, already-connected client."""
    store = RedisDocumentStore(mock_config)
    store._client = MagicMock()
    store._client.ping = AsyncMock(return_value=True)
    store._connected = True
    store._consume_script = AsyncMock()
    store._reset_script = AsyncMock()
    store._hit_script = AsyncMock()
    return store


class TestConnection:
    """Test cases for connection handling."""

    @pytest.mark.asyncio
    async def test_connect_registers_scripts(self, mock_config) -> None:
        store = RedisDocumentStore(mock_config)
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)

        with patch("services.redis_store.redis.ConnectionPool") as pool_cls, patch(
            "services.redis_store.redis.Redis", return_value=client
        ):
            await store.connect()

        kwargs = pool_cls.call_args.kwargs
        assert kwargs["decode_responses"] is True
        assert kwargs["host"] == mock_config.redis_host
        assert kwargs["max_connections"] == mock_config.redis_max_connections
        assert client.register_script.call_count == 3
        assert await store.is_healthy() is True

    @pytest.mark.asyncio
    async def test_connect_failure(self, mock_config) -> None:
        store = RedisDocumentStore(mock_config)
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))

        with patch("services.redis_store.redis.ConnectionPool"), patch(
            "services.redis_store.redis.Redis", return_value=client
        ):
            with pytest.raises(StoreUnavailable) as exc_info:
                await store.connect()

        assert exc_info.value.operation == "connect"
        assert await store.is_healthy() is False

    @pytest.mark.asyncio
    async def test_unconnected_client_is_store_unavailable(self, mock_config) -> None:
        store = RedisDocumentStore(mock_config)

        with patch.object(store, "connect", new=AsyncMock()):
            with pytest.raises(StoreUnavailable) as exc_info:
                await store._ensure_connected()

        assert exc_info.value.operation == "connect"

    @pytest.mark.asyncio
    async def test_health_check_failure(self, redis_store: RedisDocumentStore) -> None:
        redis_store._client.ping.side_effect = RedisConnectionError("gone")

        assert await redis_store.is_healthy() is False
        assert redis_store._connected is False

    @pytest.mark.asyncio
    async def test_close(self, redis_store: RedisDocumentStore) -> None:
        redis_store._client.aclose = AsyncMock()

        await redis_store.close()

        redis_store._client.aclose.assert_awaited_once()


class TestGuard:
    """Test cases for backend error translation."""

    @pytest.mark.asyncio
    async def test_redis_error_becomes_store_unavailable(self, redis_store: RedisDocumentStore) -> None:
        redis_store._client.get = AsyncMock(side_effect=RedisConnectionError("timeout"))

        with pytest.raises(StoreUnavailable) as exc_info:
            await redis_store.is_token_revoked("tok", NOW)

        assert exc_info.value.details["operation"] == "is_token_revoked"

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(self, redis_store: RedisDocumentStore) -> None:
        with pytest.raises(ValueError):
            async with redis_store._guard("anything"):
                raise ValueError("not a backend failure")


class TestQuotaScripts:
    """Test cases for the scripted identity updates."""

    @pytest.mark.asyncio
    async def test_consume_unknown_identity(self, redis_store: RedisDocumentStore) -> None:
        redis_store._consume_script.return_value = -1

        assert await redis_store.consume_quota("missing", 1, None, 50) == (False, None)

    @pytest.mark.asyncio
    async def test_consume_passes_keys_and_entry(self, redis_store: RedisDocumentStore) -> None:
        redis_store._consume_script.return_value = 1
        redis_store.get_identity = AsyncMock(return_value="identity")
        entry = UsageHistoryEntry(query="react", endpoint_class="search", timestamp=NOW)

        result = await redis_store.consume_quota("id-1", 1, entry, 50)

        assert result == (True, "identity")
        call = redis_store._consume_script.await_args.kwargs
        assert call["keys"] == ["gqg:identity:id-1", "gqg:identity:id-1:history"]
        assert call["args"][0] == 1
        assert json.loads(call["args"][1])["query"] == "react"
        assert call["args"][2] == 50

    @pytest.mark.asyncio
    async def test_consume_rejected(self, redis_store: RedisDocumentStore) -> None:
        redis_store._consume_script.return_value = 0
        redis_store.get_identity = AsyncMock(return_value="identity")

        assert await redis_store.consume_quota("id-1", 1, None, 50) == (False, "identity")

    @pytest.mark.asyncio
    async def test_renew_condition_not_met(self, redis_store: RedisDocumentStore) -> None:
        redis_store._reset_script.return_value = 0

        assert await redis_store.renew_identity_if_expired("id-1", NOW, NOW + timedelta(hours=24)) is None
        assert redis_store._reset_script.await_args.kwargs["args"][4] == "0"

    @pytest.mark.asyncio
    async def test_forced_reset(self, redis_store: RedisDocumentStore) -> None:
        redis_store._reset_script.return_value = 1
        redis_store.get_identity = AsyncMock(return_value="identity")
        new_expiry = NOW + timedelta(hours=24)

        assert await redis_store.reset_identity("id-1", new_expiry) == "identity"
        args = redis_store._reset_script.await_args.kwargs["args"]
        assert args[1] == to_epoch_ms(new_expiry)
        assert args[2] == to_epoch_ms(new_expiry + timedelta(seconds=60))
        assert args[4] == "1"


class TestRevokedTokens:
    """Test cases for revoked token records."""

    @pytest.mark.asyncio
    async def test_insert_uses_set_if_absent(self, redis_store: RedisDocumentStore) -> None:
        redis_store._client.set = AsyncMock(return_value=True)
        redis_store._client.zadd = AsyncMock()
        record = RevokedToken(token="tok", identity_id="id-1", revoked_at=NOW, expires_at=NOW + timedelta(hours=1))

        assert await redis_store.insert_revoked_token(record) is True

        call = redis_store._client.set.await_args
        assert call.args[0] == f"gqg:revoked:{record.digest}"
        assert call.kwargs["nx"] is True
        redis_store._client.zadd.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_insert(self, redis_store: RedisDocumentStore) -> None:
        redis_store._client.set = AsyncMock(return_value=None)
        redis_store._client.zadd = AsyncMock()
        record = RevokedToken(token="tok", identity_id="id-1", revoked_at=NOW, expires_at=NOW + timedelta(hours=1))

        assert await redis_store.insert_revoked_token(record) is False
        redis_store._client.zadd.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lookup_respects_record_expiry(self, redis_store: RedisDocumentStore) -> None:
        record = RevokedToken(token="tok", identity_id="id-1", revoked_at=NOW, expires_at=NOW + timedelta(hours=1))
        redis_store._client.get = AsyncMock(return_value=record.model_dump_json())

        assert await redis_store.is_token_revoked("tok", NOW) is True
        assert await redis_store.is_token_revoked("tok", NOW + timedelta(hours=1)) is False


class TestCacheHits:
    """Test cases for the scripted cache read."""

    @pytest.mark.asyncio
    async def test_hit_parses_hash(self, redis_store: RedisDocumentStore) -> None:
        redis_store._hit_script.return_value = [
            "value", json.dumps({"items": [1]}),
            "endpoint_class", "video",
            "expires_at", str(to_epoch_ms(NOW + timedelta(hours=1))),
            "hits", "3",
            "created_at", str(to_epoch_ms(NOW)),
            "last_accessed_at", str(to_epoch_ms(NOW)),
        ]

        entry = await redis_store.hit_cache_entry('video:{"video_id":"x"}', NOW)

        assert entry.value == {"items": [1]}
        assert entry.hits == 3
        assert entry.endpoint_class == "video"
        assert redis_store._hit_script.await_args.kwargs["keys"] == ['gqg:cache:entry:video:{"video_id":"x"}']

    @pytest.mark.asyncio
    async def test_miss(self, redis_store: RedisDocumentStore) -> None:
        redis_store._hit_script.return_value = None

        assert await redis_store.hit_cache_entry("video:{}", NOW) is None
