"""
Tests for the sandbox ledger and the gateway that selects it.
"""

from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from voiceledger.config import Settings
from voiceledger.models.domain import CallContext, PaymentIntent
from voiceledger.models.enums import CreditOperation, RedemptionOutcome
from voiceledger.services.ledger import LiveLedger, build_ledger_gateway
from voiceledger.services.sandbox import SandboxLedger
from voiceledger.store.base import LedgerStore
from voiceledger.store.memory import InMemoryLedgerStore


@pytest.fixture
def untouchable_store() -> MagicMock:
    """Store double that records any access."""
    return MagicMock(spec=LedgerStore)


@pytest.fixture
def sandbox(untouchable_store) -> SandboxLedger:
    gateway = build_ledger_gateway(Settings(ledger_backend="memory"), store=untouchable_store)
    ledger = gateway.for_context(CallContext(sandbox=True))
    assert isinstance(ledger, SandboxLedger)
    return ledger


class TestGateway:
    """LedgerGateway selection."""

    def test_live_by_default(self, untouchable_store):
        gateway = build_ledger_gateway(Settings(ledger_backend="memory"), store=untouchable_store)

        assert isinstance(gateway.for_context(), LiveLedger)
        assert isinstance(gateway.for_context(CallContext(request_id="req-1")), LiveLedger)

    def test_sandbox_flag(self, untouchable_store):
        gateway = build_ledger_gateway(Settings(ledger_backend="memory"), store=untouchable_store)
        ledger = gateway.for_context(CallContext(sandbox=True))

        assert ledger.sandbox is True

    def test_memory_backend_from_settings(self):
        gateway = build_ledger_gateway(Settings(ledger_backend="memory"))
        assert isinstance(gateway.live.store, InMemoryLedgerStore)


class TestSandboxRedemption:
    """Magic codes produce canned outcomes."""

    @pytest.mark.parametrize(
        "code,outcome",
        [
            ("SELF123", RedemptionOutcome.SELF_REFERRAL),
            ("USED123", RedemptionOutcome.ALREADY_REFERRED),
            ("FULL123", RedemptionOutcome.CODE_MAXED_OUT),
            ("ABC125", RedemptionOutcome.INVALID_CODE),
        ],
    )
    async def test_rejections(self, sandbox, code, outcome):
        result = await sandbox.redeem(code, uuid4())

        assert result.outcome == outcome
        assert result.sandbox is True
        assert result.referee_credits_added == 0

    async def test_valid_code(self, sandbox):
        result = await sandbox.redeem("test123", uuid4())

        assert result.outcome == RedemptionOutcome.SUCCESS
        assert result.referrer_credits_added == 5
        assert result.referee_credits_added == 5
        assert result.code_uses_remaining == 4

    async def test_limit_reached_code(self, sandbox):
        result = await sandbox.redeem("LIMIT123", uuid4())

        assert result.outcome == RedemptionOutcome.REFEREE_LIMIT_REACHED
        assert result.referrer_credits_added == 5
        assert result.referee_credits_added == 0

    async def test_extract_then_redeem(self, sandbox):
        code = sandbox.extract_code_from_text("hey can you transcribe this TEST123 thanks")
        result = await sandbox.redeem(code, uuid4())
        assert result.success is True


class TestSandboxIsStorageFree:
    """No sandbox call reaches the store."""

    async def test_every_operation(self, sandbox, untouchable_store):
        user, created = await sandbox.find_or_create_user("+447700900200")
        await sandbox.check_user_credits("+447700900200")
        await sandbox.get_user_stats(user.user_id)
        await sandbox.mark_intro_seen(user.user_id)
        usage = await sandbox.record_transcription(
            user.user_id, 20, 50, Decimal("0.01"), Decimal("0.01")
        )
        await sandbox.redeem("TEST123", user)
        await sandbox.generate_code_for_user(user.user_id)
        await sandbox.regenerate_code_for_user(user.user_id)
        grant = await sandbox.add_credits(user.user_id, 5, CreditOperation.PROMOTIONAL)
        await sandbox.record_payment(
            PaymentIntent(
                user_id=user.user_id,
                amount=Decimal("4.99"),
                credits_purchased=100,
                payment_method="card",
                transaction_id="pi_sandbox",
            )
        )
        limit = await sandbox.check_referral_credit_limit(user.user_id)
        months = await sandbox.estimate_months_remaining(user.user_id)

        assert created is False
        assert usage.user.credits_remaining == 49
        assert grant.user.credits_remaining == 55
        assert limit.remaining_referral_credits == 25
        assert months == 3
        assert untouchable_store.mock_calls == []

    async def test_validation_still_applies(self, sandbox):
        with pytest.raises(ValueError):
            await sandbox.add_credits(uuid4(), 0, CreditOperation.PROMOTIONAL)

    async def test_deterministic_user_ids(self, sandbox):
        first, _ = await sandbox.find_or_create_user("+447700900201")
        second, _ = await sandbox.find_or_create_user("+447700900201")
        assert first == second
