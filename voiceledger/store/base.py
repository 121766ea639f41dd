"""
Ledger Store Interface.

A LedgerStore hands out LedgerSessions, each bound to exactly one database
transaction:

    async with store.transaction() as tx:
        user = await tx.get_user(user_id, for_update=True)
        ...

Leaving the block normally commits; any exception (including cancellation)
rolls back and releases the connection before propagating. Unique constraint
violations surface as DuplicateKeyError once the block has been rolled back.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from uuid import UUID

from voiceledger.models.domain import (
    CreditTransactionData,
    PaymentData,
    ReferralData,
    TranscriptionData,
    TranscriptionStats,
    UserData,
)
from voiceledger.models.enums import CreditOperation


class LedgerSession(ABC):
    """Operations available inside one ledger transaction."""

    # ------------------------------------------------------------------ users

    @abstractmethod
    async def get_user(self, user_id: UUID, *, for_update: bool = False) -> UserData | None:
        """Fetch a user, optionally locking the row until the transaction ends."""

    @abstractmethod
    async def get_user_by_phone(self, phone_identifier: str) -> UserData | None:
        """Fetch a user by phone identifier."""

    @abstractmethod
    async def create_user(self, phone_identifier: str) -> UserData:
        """Insert a user with a zero balance. Raises DuplicateKeyError on a taken phone."""

    @abstractmethod
    async def lock_users(self, user_ids: Iterable[UUID]) -> dict[UUID, UserData]:
        """Lock several user rows in ascending id order; missing ids are absent from the result."""

    @abstractmethod
    async def mark_intro_seen(self, user_id: UUID) -> bool:
        """Set has_seen_intro; False when the user doesn't exist."""

    # ------------------------------------------------------------ balances

    @abstractmethod
    async def increment_credits(self, user_id: UUID, amount: int) -> UserData | None:
        """Add amount to credits_remaining; None when the user doesn't exist."""

    @abstractmethod
    async def apply_transcription_usage(self, user_id: UUID, audio_seconds: int) -> UserData | None:
        """
        Consume one credit for a transcription.

        Decrements credits_remaining by one without going below zero, bumps
        usage_count and total_seconds, stamps last_used_at and sets
        free_trial_used once the balance reaches zero.
        """

    @abstractmethod
    async def insert_credit_transaction(
        self,
        user_id: UUID,
        credits_amount: int,
        operation: CreditOperation,
        metadata: dict[str, str],
    ) -> CreditTransactionData:
        """Append a credit transaction row."""

    @abstractmethod
    async def list_credit_transactions(self, user_id: UUID) -> list[CreditTransactionData]:
        """A user's credit transactions, oldest first."""

    @abstractmethod
    async def sum_credits(self, user_id: UUID, operations: Iterable[CreditOperation]) -> int:
        """Sum credit transaction amounts of the given types for a user."""

    # ------------------------------------------------------------ referrals

    @abstractmethod
    async def find_user_by_referral_code(self, code: str) -> UserData | None:
        """Find the owner of a referral code."""

    @abstractmethod
    async def referral_code_exists(self, code: str) -> bool:
        """True if any user owns this code."""

    @abstractmethod
    async def assign_referral_code(self, user_id: UUID, code: str) -> UserData:
        """Store a new code for the user and reset its usage counter."""

    @abstractmethod
    async def increment_referral_code_uses(self, user_id: UUID) -> UserData:
        """Count one more successful redemption of the user's code."""

    @abstractmethod
    async def find_referral(self, referrer_id: UUID, referee_id: UUID) -> ReferralData | None:
        """Look up the referral relationship for an ordered pair."""

    @abstractmethod
    async def insert_referral(
        self,
        referrer_id: UUID,
        referee_id: UUID,
        referrer_credits: int,
        referee_credits: int,
    ) -> ReferralData:
        """Insert a referral. Raises DuplicateKeyError if the pair exists."""

    # -------------------------------------------------------- transcriptions

    @abstractmethod
    async def insert_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> TranscriptionData:
        """Append a transcription record."""

    @abstractmethod
    async def transcription_stats(self, user_id: UUID) -> TranscriptionStats:
        """Count, word total and first/last timestamps of a user's transcriptions."""

    # --------------------------------------------------------------- payments

    @abstractmethod
    async def find_payment_by_transaction_id(self, transaction_id: str) -> PaymentData | None:
        """Look up a payment by its provider transaction id."""

    @abstractmethod
    async def insert_payment(
        self,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        credits_purchased: int,
        payment_method: str,
        transaction_id: str,
    ) -> PaymentData:
        """Insert a payment. Raises DuplicateKeyError on a replayed transaction id."""


class LedgerStore(ABC):
    """Transactional ledger storage."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[LedgerSession]:
        """Open one all-or-nothing unit of work."""

    @abstractmethod
    async def close(self) -> None:
        """Release pooled resources."""
