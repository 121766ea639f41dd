"""
Hypothesis Property-Based Tests for the ledger.

Random operation sequences against the in-memory store must never break the
balance or referral invariants.
"""

import asyncio
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from voiceledger.models.enums import CreditOperation, RedemptionOutcome
from voiceledger.services.ledger import LiveLedger
from voiceledger.services.policy import LedgerPolicy
from voiceledger.services.referrals import ALPHABET, extract_code_from_text
from voiceledger.store.memory import InMemoryLedgerStore

# ============================================================================
# Hypothesis Strategies
# ============================================================================

usage_steps = st.lists(
    st.one_of(
        st.tuples(st.just("transcribe"), st.integers(min_value=0, max_value=600)),
        st.tuples(st.just("credit"), st.integers(min_value=1, max_value=20)),
    ),
    min_size=1,
    max_size=60,
)
starting_credits = st.integers(min_value=0, max_value=10)
codes = st.text(alphabet=ALPHABET, min_size=6, max_size=6)

# Indices into a pool of referrers / referees
redemption_pairs = st.lists(
    st.tuples(st.integers(min_value=0, max_value=7), st.integers(min_value=0, max_value=3)),
    min_size=1,
    max_size=40,
)


async def _new_ledger() -> tuple[InMemoryLedgerStore, LiveLedger]:
    store = InMemoryLedgerStore()
    return store, LiveLedger(store, LedgerPolicy())


async def _stored_user(store, phone, credits, referral_code=None):
    async with store.transaction() as tx:
        user = await tx.create_user(phone)
        if credits:
            user = await tx.increment_credits(user.user_id, credits)
        if referral_code:
            user = await tx.assign_referral_code(user.user_id, referral_code)
    return user


# ============================================================================
# Balance invariants
# ============================================================================


@given(start=starting_credits, steps=usage_steps)
@settings(max_examples=50, deadline=None)
def test_balance_never_negative(start, steps):
    """Any mix of transcriptions and grants keeps the balance at or above zero."""

    async def scenario():
        store, ledger = await _new_ledger()
        user = await _stored_user(store, "+447700900400", start)
        expected = start
        for kind, value in steps:
            if kind == "transcribe":
                result = await ledger.record_transcription(
                    user.user_id, value, 10, Decimal("0"), Decimal("0")
                )
                expected = max(0, expected - 1)
                current = result.user
            else:
                current = (
                    await ledger.add_credits(user.user_id, value, CreditOperation.PROMOTIONAL)
                ).user
                expected += value
            assert current.credits_remaining >= 0
            assert current.credits_remaining == expected

    asyncio.run(scenario())


# ============================================================================
# Referral invariants
# ============================================================================


@given(pairs=redemption_pairs)
@settings(max_examples=40, deadline=None)
def test_referral_caps_hold(pairs):
    """Lifetime cap, per-code cap and pair idempotence under random redemptions."""

    async def scenario():
        store, ledger = await _new_ledger()
        referrers = [
            await _stored_user(store, f"+4477009005{i:02d}", 0, referral_code=f"ABC{code}")
            for i, code in enumerate(["125", "128", "150", "182", "200", "205", "210", "258"])
        ]
        referees = [await _stored_user(store, f"+4477009006{i:02d}", 0) for i in range(4)]

        successes: dict[tuple[int, int], int] = {}
        for referrer_index, referee_index in pairs:
            referrer = referrers[referrer_index]
            result = await ledger.redeem(referrer.referral_code, referees[referee_index])
            if result.success:
                key = (referrer_index, referee_index)
                successes[key] = successes.get(key, 0) + 1

        assert all(count == 1 for count in successes.values())
        async with store.transaction() as tx:
            for user in referrers + referees:
                total = await tx.sum_credits(user.user_id, CreditOperation.referral_types())
                assert total <= 25
                reloaded = await tx.get_user(user.user_id)
                assert reloaded.referral_code_uses <= 5

    asyncio.run(scenario())


@given(code=codes)
@settings(max_examples=50, deadline=None)
def test_real_codes_are_extracted(code):
    """Any alphabet code surrounded by spaces is found."""
    assert extract_code_from_text(f"here is my code {code.lower()} cheers") == code


@given(message=st.text(alphabet="ILOQSZ34679 ", max_size=80))
def test_messages_outside_alphabet_have_no_code(message):
    """Text made only of excluded glyphs never yields a code."""
    assert extract_code_from_text(message) is None


@given(code=codes)
@settings(max_examples=25, deadline=None)
def test_self_referral_never_mutates(code):
    """Redeeming one's own code changes nothing."""

    async def scenario():
        store, ledger = await _new_ledger()
        owner = await _stored_user(store, "+447700900700", 7, referral_code=code)
        result = await ledger.redeem(code, owner)
        assert result.outcome == RedemptionOutcome.SELF_REFERRAL
        async with store.transaction() as tx:
            reloaded = await tx.get_user(owner.user_id)
            assert await tx.list_credit_transactions(owner.user_id) == []
        assert reloaded == owner

    asyncio.run(scenario())
