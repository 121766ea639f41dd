"""
In-Memory Ledger Store - process-local implementation of the ledger store.

Transactions are serialized by one asyncio.Lock and run against a private copy
of the state; the copy replaces the committed state only when the block exits
normally. That gives the same all-or-nothing and unique-key behavior as the
SQL store without a database, which is what the test-suite and local runs use.
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from voiceledger.exceptions import DuplicateKeyError, StoreTimeoutError, WriteVerificationError
from voiceledger.models.domain import (
    CreditTransactionData,
    PaymentData,
    ReferralData,
    TranscriptionData,
    TranscriptionStats,
    UserData,
)
from voiceledger.models.enums import CreditOperation
from voiceledger.store.base import LedgerSession, LedgerStore


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@dataclass
class _UserRow:
    id: UUID
    phone_identifier: str
    created_at: datetime
    updated_at: datetime
    credits_remaining: int = 0
    free_trial_used: bool = False
    has_seen_intro: bool = False
    usage_count: int = 0
    total_seconds: int = 0
    referral_code: str | None = None
    referral_code_uses: int = 0
    last_used_at: datetime | None = None

    def to_domain(self) -> UserData:
        return UserData(
            user_id=self.id,
            phone_identifier=self.phone_identifier,
            credits_remaining=self.credits_remaining,
            free_trial_used=self.free_trial_used,
            has_seen_intro=self.has_seen_intro,
            usage_count=self.usage_count,
            total_seconds=self.total_seconds,
            referral_code=self.referral_code,
            referral_code_uses=self.referral_code_uses,
            created_at=self.created_at,
            updated_at=self.updated_at,
            last_used_at=self.last_used_at,
        )


@dataclass
class _MemoryState:
    users: dict[UUID, _UserRow] = field(default_factory=dict)
    transcriptions: list[TranscriptionData] = field(default_factory=list)
    credit_transactions: list[CreditTransactionData] = field(default_factory=list)
    referrals: list[ReferralData] = field(default_factory=list)
    payments: list[PaymentData] = field(default_factory=list)

    def copy(self) -> "_MemoryState":
        # Appended records are frozen dataclasses, only user rows are mutable
        return _MemoryState(
            users={user_id: replace(row) for user_id, row in self.users.items()},
            transcriptions=list(self.transcriptions),
            credit_transactions=list(self.credit_transactions),
            referrals=list(self.referrals),
            payments=list(self.payments),
        )


class InMemoryLedgerSession(LedgerSession):
    """Ledger operations against a working copy of the in-memory state."""

    def __init__(self, state: _MemoryState, clock: Callable[[], datetime]) -> None:
        self._state = state
        self._clock = clock

    def _row(self, user_id: UUID) -> _UserRow | None:
        return self._state.users.get(user_id)

    def _require_row(self, user_id: UUID) -> _UserRow:
        row = self._row(user_id)
        if row is None:
            raise WriteVerificationError(f"User {user_id} disappeared inside transaction")
        return row

    def _touch(self, row: _UserRow) -> UserData:
        row.updated_at = self._clock()
        return row.to_domain()

    # ------------------------------------------------------------------ users

    async def get_user(self, user_id: UUID, *, for_update: bool = False) -> UserData | None:
        row = self._row(user_id)
        return row.to_domain() if row else None

    async def get_user_by_phone(self, phone_identifier: str) -> UserData | None:
        for row in self._state.users.values():
            if row.phone_identifier == phone_identifier:
                return row.to_domain()
        return None

    async def create_user(self, phone_identifier: str) -> UserData:
        if any(row.phone_identifier == phone_identifier for row in self._state.users.values()):
            raise DuplicateKeyError("users_phone_identifier_key")
        now = self._clock()
        row = _UserRow(id=uuid4(), phone_identifier=phone_identifier, created_at=now, updated_at=now)
        self._state.users[row.id] = row
        return row.to_domain()

    async def lock_users(self, user_ids: Iterable[UUID]) -> dict[UUID, UserData]:
        return {
            user_id: self._state.users[user_id].to_domain()
            for user_id in sorted(set(user_ids))
            if user_id in self._state.users
        }

    async def mark_intro_seen(self, user_id: UUID) -> bool:
        row = self._row(user_id)
        if row is None:
            return False
        row.has_seen_intro = True
        self._touch(row)
        return True

    # ------------------------------------------------------------ balances

    async def increment_credits(self, user_id: UUID, amount: int) -> UserData | None:
        row = self._row(user_id)
        if row is None:
            return None
        row.credits_remaining += amount
        return self._touch(row)

    async def apply_transcription_usage(self, user_id: UUID, audio_seconds: int) -> UserData | None:
        row = self._row(user_id)
        if row is None:
            return None
        credits_after = row.credits_remaining - 1
        row.credits_remaining = max(0, credits_after)
        row.usage_count += 1
        row.total_seconds += audio_seconds
        row.last_used_at = self._clock()
        if credits_after <= 0:
            row.free_trial_used = True
        return self._touch(row)

    async def insert_credit_transaction(
        self,
        user_id: UUID,
        credits_amount: int,
        operation: CreditOperation,
        metadata: dict[str, str],
    ) -> CreditTransactionData:
        self._require_row(user_id)
        record = CreditTransactionData(
            transaction_id=uuid4(),
            user_id=user_id,
            credits_amount=credits_amount,
            operation_type=operation,
            metadata=dict(metadata),
            created_at=self._clock(),
        )
        self._state.credit_transactions.append(record)
        return record

    async def list_credit_transactions(self, user_id: UUID) -> list[CreditTransactionData]:
        return [tx for tx in self._state.credit_transactions if tx.user_id == user_id]

    async def sum_credits(self, user_id: UUID, operations: Iterable[CreditOperation]) -> int:
        wanted = set(operations)
        return sum(
            tx.credits_amount
            for tx in self._state.credit_transactions
            if tx.user_id == user_id and tx.operation_type in wanted
        )

    # ------------------------------------------------------------ referrals

    async def find_user_by_referral_code(self, code: str) -> UserData | None:
        for row in self._state.users.values():
            if row.referral_code == code:
                return row.to_domain()
        return None

    async def referral_code_exists(self, code: str) -> bool:
        return any(row.referral_code == code for row in self._state.users.values())

    async def assign_referral_code(self, user_id: UUID, code: str) -> UserData:
        row = self._require_row(user_id)
        if any(
            other.referral_code == code and other.id != user_id
            for other in self._state.users.values()
        ):
            raise DuplicateKeyError("users_referral_code_key")
        row.referral_code = code
        row.referral_code_uses = 0
        return self._touch(row)

    async def increment_referral_code_uses(self, user_id: UUID) -> UserData:
        row = self._require_row(user_id)
        row.referral_code_uses += 1
        return self._touch(row)

    async def find_referral(self, referrer_id: UUID, referee_id: UUID) -> ReferralData | None:
        for referral in self._state.referrals:
            if referral.referrer_id == referrer_id and referral.referee_id == referee_id:
                return referral
        return None

    async def insert_referral(
        self,
        referrer_id: UUID,
        referee_id: UUID,
        referrer_credits: int,
        referee_credits: int,
    ) -> ReferralData:
        if await self.find_referral(referrer_id, referee_id) is not None:
            raise DuplicateKeyError("uq_referrals_pair")
        record = ReferralData(
            referral_id=uuid4(),
            referrer_id=referrer_id,
            referee_id=referee_id,
            referrer_credits=referrer_credits,
            referee_credits=referee_credits,
            created_at=self._clock(),
        )
        self._state.referrals.append(record)
        return record

    # -------------------------------------------------------- transcriptions

    async def insert_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> TranscriptionData:
        self._require_row(user_id)
        record = TranscriptionData(
            transcription_id=uuid4(),
            user_id=user_id,
            audio_seconds=audio_seconds,
            word_count=word_count,
            stt_cost=Decimal(stt_cost),
            delivery_cost=Decimal(delivery_cost),
            total_cost=Decimal(stt_cost) + Decimal(delivery_cost),
            created_at=self._clock(),
        )
        self._state.transcriptions.append(record)
        return record

    async def transcription_stats(self, user_id: UUID) -> TranscriptionStats:
        records = [t for t in self._state.transcriptions if t.user_id == user_id]
        if not records:
            return TranscriptionStats(0, 0, None, None)
        return TranscriptionStats(
            total_transcriptions=len(records),
            total_words=sum(t.word_count for t in records),
            first_at=min(t.created_at for t in records),
            last_at=max(t.created_at for t in records),
        )

    # --------------------------------------------------------------- payments

    async def find_payment_by_transaction_id(self, transaction_id: str) -> PaymentData | None:
        for payment in self._state.payments:
            if payment.transaction_id == transaction_id:
                return payment
        return None

    async def insert_payment(
        self,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        credits_purchased: int,
        payment_method: str,
        transaction_id: str,
    ) -> PaymentData:
        self._require_row(user_id)
        if await self.find_payment_by_transaction_id(transaction_id) is not None:
            raise DuplicateKeyError("payments_transaction_id_key")
        record = PaymentData(
            payment_id=uuid4(),
            user_id=user_id,
            amount=Decimal(amount),
            currency=currency,
            credits_purchased=credits_purchased,
            payment_method=payment_method,
            transaction_id=transaction_id,
            created_at=self._clock(),
        )
        self._state.payments.append(record)
        return record


class InMemoryLedgerStore(LedgerStore):
    """Ledger store kept in process memory."""

    def __init__(
        self,
        *,
        lock_timeout: float = 5.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._state = _MemoryState()
        self._lock = asyncio.Lock()
        self._lock_timeout = lock_timeout
        self._clock = clock

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerSession]:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self._lock_timeout)
        except TimeoutError as exc:
            raise StoreTimeoutError("lock acquisition", self._lock_timeout) from exc

        try:
            working = self._state.copy()
            yield InMemoryLedgerSession(working, self._clock)
            self._state = working
        finally:
            self._lock.release()

    async def close(self) -> None:
        return None
