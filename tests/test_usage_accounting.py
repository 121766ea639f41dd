"""
Tests for UsageAccounting and post-commit actions.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from conftest import create_stored_user, get_stored_user
from voiceledger.exceptions import CodeGenerationError, UserNotFoundError
from voiceledger.services.hooks import run_after_commit
from voiceledger.services.ledger import LiveLedger
from voiceledger.services.policy import LedgerPolicy
from voiceledger.services.referrals import ReferralEngine


async def record(ledger, user_id, audio_seconds=30, word_count=60):
    return await ledger.record_transcription(
        user_id, audio_seconds, word_count, Decimal("0.006"), Decimal("0.005")
    )


class TestRecordTranscription:
    """Tests for record_transcription."""

    async def test_last_credit_ends_free_trial(self, store, ledger):
        user = await create_stored_user(store, credits=1)

        result = await record(ledger, user.user_id)

        assert result.user.credits_remaining == 0
        assert result.user.free_trial_used is True
        assert result.user.usage_count == user.usage_count + 1

    async def test_writes_transcription_and_counters(self, store, ledger, clock):
        user = await create_stored_user(store, credits=50)

        result = await record(ledger, user.user_id, audio_seconds=42, word_count=120)

        assert result.transcription.audio_seconds == 42
        assert result.transcription.word_count == 120
        assert result.transcription.total_cost == Decimal("0.011")
        stored = await get_stored_user(store, user.user_id)
        assert stored.credits_remaining == 49
        assert stored.total_seconds == 42
        assert stored.last_used_at == clock.now
        assert stored.free_trial_used is False

    async def test_zero_balance_never_goes_negative(self, store, ledger):
        user = await create_stored_user(store, credits=0)

        first = await record(ledger, user.user_id)
        second = await record(ledger, user.user_id)

        assert first.user.credits_remaining == 0
        assert second.user.credits_remaining == 0
        assert second.user.usage_count == 2

    async def test_unknown_user_writes_nothing(self, store, ledger):
        missing = uuid4()
        with pytest.raises(UserNotFoundError):
            await record(ledger, missing)

        async with store.transaction() as tx:
            stats = await tx.transcription_stats(missing)
        assert stats.total_transcriptions == 0

    async def test_negative_duration_rejected(self, store, ledger):
        user = await create_stored_user(store)
        with pytest.raises(ValueError):
            await record(ledger, user.user_id, audio_seconds=-1)
        assert (await get_stored_user(store, user.user_id)).credits_remaining == 50

    async def test_fractional_duration_rejected(self, store, ledger):
        user = await create_stored_user(store)
        with pytest.raises(ValueError, match="audio_seconds"):
            await record(ledger, user.user_id, audio_seconds=12.5)

        stored = await get_stored_user(store, user.user_id)
        assert stored.credits_remaining == 50
        assert stored.total_seconds == 0

    async def test_float_costs_stored_exactly(self, store, ledger):
        user = await create_stored_user(store)

        result = await ledger.record_transcription(user.user_id, 33, 90, 0.0033, 0.005)

        assert result.transcription.stt_cost == Decimal("0.0033")
        assert result.transcription.total_cost == Decimal("0.0083")


class TestPostCommitActions:
    """Referral code issuance and low balance context."""

    async def test_code_issued_at_threshold(self, store, ledger):
        user = await create_stored_user(store, credits=5)

        result = await record(ledger, user.user_id)

        assert result.user.credits_remaining == 4
        assert result.referral_code is not None
        assert (await get_stored_user(store, user.user_id)).referral_code == result.referral_code

    async def test_no_code_above_threshold(self, store, ledger):
        user = await create_stored_user(store, credits=20)

        result = await record(ledger, user.user_id)

        assert result.referral_code is None
        assert result.low_balance is None

    async def test_no_code_once_trial_used(self, store, ledger):
        user = await create_stored_user(store, credits=1)

        result = await record(ledger, user.user_id)

        assert result.user.free_trial_used is True
        assert result.referral_code is None

    async def test_issuance_failure_does_not_fail_recording(self, store, ledger):
        user = await create_stored_user(store, credits=4)

        with patch.object(
            ReferralEngine,
            "generate_code_for_user",
            new=AsyncMock(side_effect=CodeGenerationError(10)),
        ):
            result = await record(ledger, user.user_id)

        assert result.referral_code is None
        assert (await get_stored_user(store, user.user_id)).credits_remaining == 3

    async def test_slow_issuance_bounded_by_timeout(self, store):
        ledger = LiveLedger(store, LedgerPolicy(post_commit_timeout=0.05))
        user = await create_stored_user(store, credits=4)

        async def stalled(self, user_id):
            await asyncio.sleep(30)

        with patch.object(ReferralEngine, "generate_code_for_user", stalled):
            result = await asyncio.wait_for(record(ledger, user.user_id), timeout=1.0)

        assert result.referral_code is None
        assert result.user.credits_remaining == 3

    async def test_low_balance_context_at_one_credit(self, store, ledger):
        user = await create_stored_user(store, credits=2)

        result = await record(ledger, user.user_id)

        assert result.user.credits_remaining == 1
        assert result.low_balance is not None
        assert result.low_balance.credits_remaining == 1
        assert result.low_balance.referral_code == result.referral_code
        # One transcription today -> 50 days at this pace
        assert result.low_balance.estimated_months == 2

    async def test_existing_code_is_reported(self, store, ledger):
        user = await create_stored_user(store, credits=3, referral_code="ABC125")

        result = await record(ledger, user.user_id)

        assert result.referral_code == "ABC125"


class TestRunAfterCommit:
    """Tests for run_after_commit."""

    async def test_returns_result(self):
        async def action():
            return "ABC125"

        assert await run_after_commit("issue", action, default=None, timeout=1.0) == "ABC125"

    async def test_failure_returns_default(self):
        async def action():
            raise RuntimeError("boom")

        assert await run_after_commit("issue", action, default="fallback", timeout=1.0) == "fallback"

    async def test_timeout_returns_default(self):
        async def action():
            await asyncio.sleep(5)

        assert await run_after_commit("slow", action, default=3, timeout=0.01) == 3
