"""Unit tests for guest identity management."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from models import Anonymous, Authenticated, ClientContext, RevocationReason
from services import IdentityManager, QuotaLedger, RevocationLedger, TokenCodec
from utils import AbuseDetected, AuthenticationRequired, StoreUnavailable


@pytest.fixture
def lenient_manager(mock_config, store, revocations, quota_ledger, clock) -> IdentityManager:
    """Manager whose tokens outlive their identity window by five minutes."""
    config = mock_config.model_copy(update={"token_expiry_leeway_seconds": 300})
    codec = TokenCodec(config, clock=clock)
    return IdentityManager(config, store, codec, revocations, quota_ledger, clock=clock)


class TestCreateIdentity:
    """Test cases for guest issuance."""

    @pytest.mark.asyncio
    async def test_issues_identity_token_and_session(
        self, identity_manager: IdentityManager, store, client_context, clock
    ) -> None:
        issued = await identity_manager.create_identity(client_context)

        assert issued.identity.quota.used == 0
        assert issued.identity.quota.limit == 100
        assert issued.identity.display_name == f"Guest_{issued.identity.id[:8]}"
        assert issued.expires_at == clock() + timedelta(hours=24)

        sessions = await store.list_sessions(issued.identity.id)
        assert len(sessions) == 1
        assert sessions[0].token == issued.token
        assert sessions[0].fingerprint == client_context.fingerprint
        assert sessions[0].id == issued.session_id

    @pytest.mark.asyncio
    async def test_abuse_threshold(self, mock_config, store, codec, revocations, quota_ledger, client_context, clock) -> None:
        config = mock_config.model_copy(update={"max_active_sessions_per_fingerprint": 2})
        manager = IdentityManager(config, store, codec, revocations, quota_ledger, clock=clock)
        await manager.create_identity(client_context)
        await manager.create_identity(client_context)

        with pytest.raises(AbuseDetected) as exc_info:
            await manager.create_identity(client_context)

        assert exc_info.value.details == {"activeSessions": 2, "threshold": 2}
        other = ClientContext(ip_address="198.51.100.1", user_agent="pytest-agent/1.0")
        assert (await manager.create_identity(other)).token

    @pytest.mark.asyncio
    async def test_identities_are_distinct(self, identity_manager: IdentityManager, client_context) -> None:
        first = await identity_manager.create_identity(client_context)
        second = await identity_manager.create_identity(client_context)

        assert first.identity.id != second.identity.id
        assert first.token != second.token


class TestVerify:
    """Test cases for token verification."""

    @pytest.mark.asyncio
    async def test_valid_token(self, identity_manager: IdentityManager, client_context) -> None:
        issued = await identity_manager.create_identity(client_context)

        auth = await identity_manager.verify(issued.token)

        assert isinstance(auth, Authenticated)
        assert auth.identity.id == issued.identity.id
        assert auth.renewed is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, identity_manager: IdentityManager, token) -> None:
        auth = await identity_manager.verify(token)

        assert auth == Anonymous(reason="missing")

    @pytest.mark.asyncio
    async def test_invalid_token(self, identity_manager: IdentityManager) -> None:
        auth = await identity_manager.verify("a.b.c")

        assert auth == Anonymous(reason="invalid")

    @pytest.mark.asyncio
    async def test_expired_token(self, identity_manager: IdentityManager, client_context, clock) -> None:
        issued = await identity_manager.create_identity(client_context)
        clock.advance(hours=24)

        auth = await identity_manager.verify(issued.token)

        assert auth == Anonymous(reason="expired")

    @pytest.mark.asyncio
    async def test_unknown_identity(self, identity_manager: IdentityManager, store, client_context) -> None:
        issued = await identity_manager.create_identity(client_context)
        await store.delete_identity(issued.identity.id)

        auth = await identity_manager.verify(issued.token)

        assert auth == Anonymous(reason="unknown_identity")

    @pytest.mark.asyncio
    async def test_revoked_token(self, identity_manager: IdentityManager, client_context) -> None:
        issued = await identity_manager.create_identity(client_context)
        await identity_manager.revoke(issued.token)

        auth = await identity_manager.verify(issued.token)

        assert auth == Anonymous(reason="revoked")

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_anonymous(self, identity_manager: IdentityManager, client_context) -> None:
        issued = await identity_manager.create_identity(client_context)
        identity_manager.store = AsyncMock()
        identity_manager.store.get_identity.side_effect = StoreUnavailable("get_identity")

        auth = await identity_manager.verify(issued.token)

        assert auth == Anonymous(reason="store_unavailable")


class TestAutoRenew:
    """Test cases for renewal of lapsed identities during verification."""

    @pytest.mark.asyncio
    async def test_lapsed_identity_renewed(
        self, lenient_manager: IdentityManager, quota_ledger: QuotaLedger, store, client_context, clock
    ) -> None:
        issued = await lenient_manager.create_identity(client_context)
        auth = await lenient_manager.verify(issued.token)
        for _ in range(5):
            await quota_ledger.consume(auth.identity, endpoint_class="search")

        clock.advance(hours=24, seconds=10)
        renewed = await lenient_manager.verify(issued.token)

        assert isinstance(renewed, Authenticated)
        assert renewed.renewed is True
        assert renewed.identity.quota_used == 0
        assert renewed.identity.expires_at == clock() + timedelta(hours=24)
        session = (await store.list_sessions(issued.identity.id))[0]
        assert session.expires_at == renewed.identity.expires_at

    @pytest.mark.asyncio
    async def test_concurrent_verification_renews_once(
        self, lenient_manager: IdentityManager, client_context, clock
    ) -> None:
        issued = await lenient_manager.create_identity(client_context)
        clock.advance(hours=24, seconds=10)

        results = await asyncio.gather(*(lenient_manager.verify(issued.token) for _ in range(5)))

        assert all(isinstance(r, Authenticated) for r in results)
        assert sum(1 for r in results if r.renewed) == 1
        assert len({r.identity.expires_at for r in results}) == 1

    @pytest.mark.asyncio
    async def test_not_renewed_before_expiry(self, lenient_manager: IdentityManager, client_context, clock) -> None:
        issued = await lenient_manager.create_identity(client_context)
        clock.advance(hours=23)

        auth = await lenient_manager.verify(issued.token)

        assert auth.renewed is False


class TestRenewAndRevoke:
    """Test cases for explicit refresh and logout."""

    @pytest.mark.asyncio
    async def test_renew_resets_quota_and_reissues(
        self, identity_manager: IdentityManager, quota_ledger: QuotaLedger, store, client_context, clock
    ) -> None:
        issued = await identity_manager.create_identity(client_context)
        auth = await identity_manager.verify(issued.token)
        await quota_ledger.consume(auth.identity, cost=40, endpoint_class="search")
        clock.advance(hours=1)

        refreshed = await identity_manager.renew(issued.token, client_context)

        assert refreshed.token != issued.token
        assert refreshed.identity.id == issued.identity.id
        assert refreshed.identity.quota.used == 0
        assert refreshed.expires_at == clock() + timedelta(hours=24)
        assert refreshed.session_id == issued.session_id
        sessions = await store.list_sessions(issued.identity.id)
        assert [s.token for s in sessions if s.is_active] == [refreshed.token]

    @pytest.mark.asyncio
    async def test_renew_requires_authentication(self, identity_manager: IdentityManager, client_context) -> None:
        with pytest.raises(AuthenticationRequired) as exc_info:
            await identity_manager.renew("garbage", client_context)

        assert exc_info.value.details == {"reason": "invalid"}

    @pytest.mark.asyncio
    async def test_renew_without_active_session_creates_one(
        self, identity_manager: IdentityManager, store, client_context, clock
    ) -> None:
        issued = await identity_manager.create_identity(client_context)
        await store.deactivate_sessions(issued.identity.id, clock())

        refreshed = await identity_manager.renew(issued.token, client_context)

        assert refreshed.session_id != issued.session_id

    @pytest.mark.asyncio
    async def test_revoke_deactivates_sessions(
        self, identity_manager: IdentityManager, revocations: RevocationLedger, store, client_context
    ) -> None:
        issued = await identity_manager.create_identity(client_context)

        await identity_manager.revoke(issued.token, RevocationReason.SECURITY)

        sessions = await store.list_sessions(issued.identity.id)
        assert all(not s.is_active for s in sessions)
        assert await revocations.is_revoked(issued.token) is True

    @pytest.mark.asyncio
    async def test_revoke_twice_requires_authentication(self, identity_manager: IdentityManager, client_context) -> None:
        issued = await identity_manager.create_identity(client_context)
        await identity_manager.revoke(issued.token)

        with pytest.raises(AuthenticationRequired):
            await identity_manager.revoke(issued.token)

    @pytest.mark.asyncio
    async def test_revoked_token_stays_rejected_through_leeway(
        self, lenient_manager: IdentityManager, store, client_context, clock
    ) -> None:
        issued = await lenient_manager.create_identity(client_context)
        await lenient_manager.revoke(issued.token)

        clock.advance(hours=24, seconds=10)
        auth = await lenient_manager.verify(issued.token)

        assert auth == Anonymous(reason="revoked")
        identity = await store.get_identity(issued.identity.id)
        assert identity.expires_at == issued.expires_at

        clock.advance(seconds=300)
        assert await lenient_manager.verify(issued.token) == Anonymous(reason="expired")


class TestUsage:
    """Test cases for usage analytics."""

    @pytest.mark.asyncio
    async def test_usage_report(
        self, identity_manager: IdentityManager, quota_ledger: QuotaLedger, client_context
    ) -> None:
        issued = await identity_manager.create_identity(client_context)
        identity = (await identity_manager.verify(issued.token)).identity
        identity = await quota_ledger.consume(identity, query="react", endpoint_class="search")
        identity = await quota_ledger.consume(identity, query="dQw4w9WgXcQ", endpoint_class="video")
        identity = await quota_ledger.consume(identity, query="vue", endpoint_class="search")

        report = identity_manager.usage(identity, recent=2)

        assert report.total_calls == 3
        assert report.calls_by_endpoint == {"search": 2, "video": 1}
        assert [e.query for e in report.recent] == ["vue", "dQw4w9WgXcQ"]
        assert report.identity.quota.used == 3
