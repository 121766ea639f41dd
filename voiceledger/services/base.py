"""
Ledger Interface - what the webhook controller calls.

Two implementations exist: LiveLedger over a LedgerStore and SandboxLedger,
which answers from canned data and never touches storage. LedgerGateway picks
one per call context so business logic never branches on test mode.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from uuid import UUID

from voiceledger.models.domain import (
    CreditGrant,
    CreditStatus,
    PaymentIntent,
    PaymentReceipt,
    RedemptionResult,
    ReferralLimitStatus,
    UsageRecord,
    UserData,
    UserStats,
)
from voiceledger.models.enums import CreditOperation
from voiceledger.services.referrals import extract_code_from_text


class Ledger(ABC):
    """Controller-facing credit ledger operations."""

    sandbox: bool = False

    def extract_code_from_text(self, message: object) -> str | None:
        return extract_code_from_text(message)

    @abstractmethod
    async def find_or_create_user(self, phone_identifier: str) -> tuple[UserData, bool]:
        """Lazy upsert by phone identifier; returns (user, created)."""

    @abstractmethod
    async def check_user_credits(self, phone_identifier: str) -> CreditStatus:
        """Credit gate evaluated before any transcription cost is incurred."""

    @abstractmethod
    async def get_user_stats(self, user_id: UUID) -> UserStats:
        """Usage summary for a user."""

    @abstractmethod
    async def mark_intro_seen(self, user_id: UUID) -> None:
        """Record that the onboarding intro was shown."""

    @abstractmethod
    async def record_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> UsageRecord:
        """Consume one credit for a delivered transcription."""

    @abstractmethod
    async def redeem(self, code: str, redeeming_user: UserData | UUID) -> RedemptionResult:
        """Redeem a referral code."""

    @abstractmethod
    async def generate_code_for_user(self, user_id: UUID) -> str:
        """Return the user's referral code, issuing one if needed."""

    @abstractmethod
    async def regenerate_code_for_user(self, user_id: UUID) -> str:
        """Replace a referral code that reached its use limit."""

    @abstractmethod
    async def add_credits(
        self,
        user_id: UUID,
        amount: int,
        operation: CreditOperation,
        metadata: dict[str, str] | None = None,
    ) -> CreditGrant:
        """Grant credits atomically."""

    @abstractmethod
    async def record_payment(self, intent: PaymentIntent) -> PaymentReceipt:
        """Record a payment and credit the purchased amount."""

    @abstractmethod
    async def check_referral_credit_limit(self, user_id: UUID) -> ReferralLimitStatus:
        """Lifetime referral credit usage."""

    @abstractmethod
    async def estimate_months_remaining(self, user_id: UUID) -> int:
        """Advisory usage estimate in months."""
