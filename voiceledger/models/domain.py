"""
Domain Models - Internal business logic models using dataclasses.

All data crossing the store boundary is a frozen dataclass snapshot; ORM rows
and in-memory rows never leak out of the store implementations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from voiceledger.models.enums import CreditOperation, RedemptionOutcome, WarningLevel


# ============================================================================
# Snapshots
# ============================================================================


@dataclass(frozen=True)
class UserData:
    """Immutable user snapshot."""

    user_id: UUID
    phone_identifier: str
    credits_remaining: int
    free_trial_used: bool
    has_seen_intro: bool
    usage_count: int
    total_seconds: int
    referral_code: str | None
    referral_code_uses: int
    created_at: datetime
    updated_at: datetime
    last_used_at: datetime | None = None


@dataclass(frozen=True)
class TranscriptionData:
    """Immutable transcription record after persistence."""

    transcription_id: UUID
    user_id: UUID
    audio_seconds: int
    word_count: int
    stt_cost: Decimal
    delivery_cost: Decimal
    total_cost: Decimal
    created_at: datetime


@dataclass(frozen=True)
class CreditTransactionData:
    """Immutable credit transaction after persistence."""

    transaction_id: UUID
    user_id: UUID
    credits_amount: int
    operation_type: CreditOperation
    metadata: dict[str, str]
    created_at: datetime


@dataclass(frozen=True)
class ReferralData:
    """Immutable referral relationship."""

    referral_id: UUID
    referrer_id: UUID
    referee_id: UUID
    referrer_credits: int
    referee_credits: int
    created_at: datetime


@dataclass(frozen=True)
class PaymentData:
    """Immutable payment record."""

    payment_id: UUID
    user_id: UUID
    amount: Decimal
    currency: str
    credits_purchased: int
    payment_method: str
    transaction_id: str
    created_at: datetime


@dataclass(frozen=True)
class TranscriptionStats:
    """Aggregate over a user's transcription history."""

    total_transcriptions: int
    total_words: int
    first_at: datetime | None
    last_at: datetime | None


def to_cost(value: Decimal | int | float) -> Decimal:
    """
    Convert a provider cost to Decimal.

    Floats go through their shortest repr so 0.0033 is stored as 0.0033 and
    not as its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Cost must be a number: {value!r}")
    return Decimal(str(value))


# ============================================================================
# Intents - validated before any store access
# ============================================================================


@dataclass(frozen=True)
class CreditIntent:
    """Domain model for a credit grant before persistence - immutable intent."""

    user_id: UUID
    amount: int
    operation: CreditOperation
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate credit constraints."""
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"Credit amount must be an integer: {self.amount!r}")
        if self.amount <= 0:
            raise ValueError(f"Credit amount must be positive: {self.amount}")
        if not isinstance(self.operation, CreditOperation):
            raise ValueError(f"Unknown credit operation: {self.operation!r}")


@dataclass(frozen=True)
class TranscriptionIntent:
    """A delivered transcription waiting to be written to the ledger."""

    user_id: UUID
    audio_seconds: int
    word_count: int
    stt_cost: Decimal
    delivery_cost: Decimal

    def __post_init__(self) -> None:
        """Validate usage figures."""
        for name in ("audio_seconds", "word_count"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer: {value!r}")
        if not isinstance(self.stt_cost, Decimal) or not isinstance(self.delivery_cost, Decimal):
            raise ValueError("Costs must be Decimal values")
        if self.audio_seconds < 0:
            raise ValueError(f"Audio duration cannot be negative: {self.audio_seconds}")
        if self.word_count < 0:
            raise ValueError(f"Word count cannot be negative: {self.word_count}")
        if self.stt_cost < 0 or self.delivery_cost < 0:
            raise ValueError("Costs cannot be negative")

    @property
    def total_cost(self) -> Decimal:
        return self.stt_cost + self.delivery_cost


@dataclass(frozen=True)
class PaymentIntent:
    """A settled payment waiting to be credited."""

    user_id: UUID
    amount: Decimal
    credits_purchased: int
    payment_method: str
    transaction_id: str
    currency: str = "GBP"

    def __post_init__(self) -> None:
        """Validate payment constraints."""
        if self.credits_purchased <= 0:
            raise ValueError(f"Purchased credits must be positive: {self.credits_purchased}")
        if self.amount < 0:
            raise ValueError(f"Payment amount cannot be negative: {self.amount}")
        if not self.transaction_id:
            raise ValueError("transaction_id cannot be empty")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class CreditGrant:
    """User and transaction produced by one credit grant."""

    user: UserData
    transaction: CreditTransactionData


@dataclass(frozen=True)
class ReferralLimitStatus:
    """Lifetime referral credit usage for one user."""

    has_reached_limit: bool
    total_referral_credits: int
    remaining_referral_credits: int


@dataclass(frozen=True)
class CreditStatus:
    """Gate evaluated before any transcription cost is incurred."""

    can_proceed: bool
    credits_remaining: int
    free_trial_used: bool
    warning_level: WarningLevel


@dataclass(frozen=True)
class UserStats:
    """Usage summary for a user."""

    total_seconds: int
    total_words: int
    total_transcriptions: int
    credits_remaining: int
    free_trial_used: bool


@dataclass(frozen=True)
class LowBalanceContext:
    """Material for the low balance message sequence."""

    credits_remaining: int
    referral_code: str | None
    estimated_months: int


@dataclass(frozen=True)
class UsageRecord:
    """Outcome of recording one delivered transcription."""

    transcription: TranscriptionData
    user: UserData
    referral_code: str | None = None
    low_balance: LowBalanceContext | None = None


@dataclass(frozen=True)
class PaymentReceipt:
    """Payment, credit transaction and resulting user balance."""

    payment: PaymentData
    transaction: CreditTransactionData
    user: UserData


@dataclass(frozen=True)
class RedemptionResult:
    """
    Result of a referral code redemption.

    Rejections carry no user snapshots and zero credits. REFEREE_LIMIT_REACHED is
    a successful redemption where the referee had no referral headroom left.
    """

    outcome: RedemptionOutcome
    code: str | None = None
    referrer: UserData | None = None
    referee: UserData | None = None
    referrer_credits_added: int = 0
    referee_credits_added: int = 0
    code_uses_remaining: int | None = None
    referee_remaining_referral_credits: int | None = None
    sandbox: bool = False

    @classmethod
    def rejected(
        cls, outcome: RedemptionOutcome, code: str | None, sandbox: bool = False
    ) -> "RedemptionResult":
        return cls(outcome=outcome, code=code, sandbox=sandbox)

    @property
    def success(self) -> bool:
        return self.outcome in (RedemptionOutcome.SUCCESS, RedemptionOutcome.REFEREE_LIMIT_REACHED)

    @property
    def limit_reached(self) -> bool:
        return self.outcome == RedemptionOutcome.REFEREE_LIMIT_REACHED


@dataclass(frozen=True)
class CallContext:
    """Per-call context handed over by the webhook controller."""

    sandbox: bool = False
    request_id: str | None = None
    message_id: str | None = None
