"""Unit tests for the revocation ledger."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from models import RevocationReason
from services import RevocationLedger
from utils import StoreUnavailable


class TestRevocationLedger:
    """Test cases for RevocationLedger."""

    @pytest.mark.asyncio
    async def test_revoke_then_lookup(self, revocations: RevocationLedger, clock) -> None:
        expires_at = clock() + timedelta(hours=1)

        assert await revocations.revoke("tok", "id-1", expires_at, RevocationReason.SECURITY) is True
        assert await revocations.is_revoked("tok") is True
        assert await revocations.is_revoked("other") is False

    @pytest.mark.asyncio
    async def test_duplicate_revocation(self, revocations: RevocationLedger, clock) -> None:
        expires_at = clock() + timedelta(hours=1)
        await revocations.revoke("tok", "id-1", expires_at)

        assert await revocations.revoke("tok", "id-1", expires_at) is False

    @pytest.mark.asyncio
    async def test_record_lapses_with_token(self, revocations: RevocationLedger, clock) -> None:
        await revocations.revoke("tok", "id-1", clock() + timedelta(minutes=5))

        clock.advance(minutes=5)

        assert await revocations.is_revoked("tok") is False
        assert await revocations.sweep() == 1

    @pytest.mark.asyncio
    async def test_lookup_fails_open(self, clock) -> None:
        store = AsyncMock()
        store.is_token_revoked.side_effect = StoreUnavailable("is_token_revoked")
        ledger = RevocationLedger(store, clock=clock)

        assert await ledger.is_revoked("tok") is False
