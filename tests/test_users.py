"""
Tests for UserService: lazy creation, the credit gate, stats and intro flag.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import create_stored_user, get_stored_user
from voiceledger.exceptions import UserNotFoundError
from voiceledger.models.enums import CreditOperation, WarningLevel
from voiceledger.store.memory import InMemoryLedgerSession


class TestFindOrCreateUser:
    """Tests for find_or_create_user."""

    async def test_creates_with_free_trial(self, store, ledger):
        user, created = await ledger.find_or_create_user("+447700900100")

        assert created is True
        assert user.credits_remaining == 50
        assert user.free_trial_used is False
        async with store.transaction() as tx:
            transactions = await tx.list_credit_transactions(user.user_id)
        assert [(t.operation_type, t.credits_amount) for t in transactions] == [
            (CreditOperation.INITIAL_FREE, 50)
        ]

    async def test_second_call_finds_existing(self, store, ledger):
        first, _ = await ledger.find_or_create_user("+447700900101")
        second, created = await ledger.find_or_create_user("+447700900101")

        assert created is False
        assert second.user_id == first.user_id
        async with store.transaction() as tx:
            assert len(await tx.list_credit_transactions(first.user_id)) == 1

    async def test_creation_race_returns_winner(self, store, ledger, monkeypatch):
        winner = await create_stored_user(store, phone_identifier="+447700900102", credits=50)
        original = InMemoryLedgerSession.get_user_by_phone
        calls = {"count": 0}

        async def stale_first_lookup(self, phone_identifier):
            calls["count"] += 1
            if calls["count"] == 1:
                return None
            return await original(self, phone_identifier)

        monkeypatch.setattr(InMemoryLedgerSession, "get_user_by_phone", stale_first_lookup)

        user, created = await ledger.find_or_create_user("+447700900102")

        assert created is False
        assert user.user_id == winner.user_id
        assert (await get_stored_user(store, winner.user_id)).credits_remaining == 50

    @pytest.mark.parametrize("phone", ["", "   "])
    async def test_empty_phone_rejected(self, ledger, phone):
        with pytest.raises(ValueError):
            await ledger.find_or_create_user(phone)


class TestCheckUserCredits:
    """Tests for check_user_credits."""

    async def test_new_user_can_proceed(self, ledger):
        status = await ledger.check_user_credits("+447700900110")

        assert status.can_proceed is True
        assert status.credits_remaining == 50
        assert status.warning_level == WarningLevel.NONE

    @pytest.mark.parametrize(
        "credits,can_proceed,level",
        [
            (10, True, WarningLevel.WARNING),
            (5, True, WarningLevel.URGENT),
            (1, True, WarningLevel.URGENT),
            (0, False, WarningLevel.URGENT),
        ],
    )
    async def test_gate_and_warning(self, store, ledger, credits, can_proceed, level):
        await create_stored_user(store, phone_identifier="+447700900111", credits=credits)

        status = await ledger.check_user_credits("+447700900111")

        assert status.can_proceed is can_proceed
        assert status.credits_remaining == credits
        assert status.warning_level == level


class TestUserStats:
    """Tests for get_user_stats and mark_intro_seen."""

    async def test_stats_reflect_usage(self, store, ledger):
        user = await create_stored_user(store, credits=10)
        for words in (40, 60):
            await ledger.record_transcription(user.user_id, 15, words, Decimal("0"), Decimal("0"))

        stats = await ledger.get_user_stats(user.user_id)

        assert stats.total_transcriptions == 2
        assert stats.total_words == 100
        assert stats.total_seconds == 30
        assert stats.credits_remaining == 8

    async def test_stats_unknown_user(self, ledger):
        with pytest.raises(UserNotFoundError):
            await ledger.get_user_stats(uuid4())

    async def test_mark_intro_seen(self, store, ledger):
        user = await create_stored_user(store)
        await ledger.mark_intro_seen(user.user_id)
        assert (await get_stored_user(store, user.user_id)).has_seen_intro is True

    async def test_mark_intro_seen_unknown_user(self, ledger):
        with pytest.raises(UserNotFoundError):
            await ledger.mark_intro_seen(uuid4())
