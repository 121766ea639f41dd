"""
Sandbox Ledger - deterministic, storage-free answers for controller tests.

Referral redemption answers depend only on the magic codes:

    TEST123   success, both sides credited
    SELF123   self referral
    USED123   already referred
    FULL123   code maxed out
    LIMIT123  referee at the lifetime cap, referrer still credited

Every other code is invalid. Nothing here reads or writes a store.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import NAMESPACE_URL, UUID, uuid5

from voiceledger.models.domain import (
    CreditGrant,
    CreditIntent,
    CreditStatus,
    CreditTransactionData,
    PaymentData,
    PaymentIntent,
    PaymentReceipt,
    RedemptionResult,
    ReferralLimitStatus,
    TranscriptionData,
    TranscriptionIntent,
    UsageRecord,
    UserData,
    UserStats,
    to_cost,
)
from voiceledger.models.enums import CreditOperation, RedemptionOutcome
from voiceledger.observability import get_logger
from voiceledger.services.base import Ledger
from voiceledger.services.policy import LedgerPolicy
from voiceledger.services.referrals import (
    SANDBOX_ALREADY_USED_CODE,
    SANDBOX_LIMIT_REACHED_CODE,
    SANDBOX_MAXED_OUT_CODE,
    SANDBOX_SELF_REFERRAL_CODE,
    SANDBOX_VALID_CODE,
)

logger = get_logger(__name__)

SANDBOX_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)
SANDBOX_REFERRER_ID = uuid5(NAMESPACE_URL, "voiceledger:sandbox:referrer")

_REJECTIONS = {
    SANDBOX_SELF_REFERRAL_CODE: RedemptionOutcome.SELF_REFERRAL,
    SANDBOX_ALREADY_USED_CODE: RedemptionOutcome.ALREADY_REFERRED,
    SANDBOX_MAXED_OUT_CODE: RedemptionOutcome.CODE_MAXED_OUT,
}


def _sandbox_id(*parts: object) -> UUID:
    return uuid5(NAMESPACE_URL, "voiceledger:sandbox:" + ":".join(str(p) for p in parts))


class SandboxLedger(Ledger):
    """Ledger that returns canned results."""

    sandbox = True

    def __init__(self, policy: LedgerPolicy) -> None:
        self.policy = policy

    def _user(
        self,
        user_id: UUID,
        phone_identifier: str = "sandbox",
        credits_remaining: int | None = None,
        referral_code: str | None = None,
        referral_code_uses: int = 0,
    ) -> UserData:
        credits = self.policy.free_trial_credits if credits_remaining is None else credits_remaining
        return UserData(
            user_id=user_id,
            phone_identifier=phone_identifier,
            credits_remaining=credits,
            free_trial_used=credits <= 0,
            has_seen_intro=True,
            usage_count=0,
            total_seconds=0,
            referral_code=referral_code,
            referral_code_uses=referral_code_uses,
            created_at=SANDBOX_EPOCH,
            updated_at=SANDBOX_EPOCH,
        )

    def _transaction(self, intent: CreditIntent) -> CreditTransactionData:
        return CreditTransactionData(
            transaction_id=_sandbox_id("credit", intent.user_id, intent.operation.value),
            user_id=intent.user_id,
            credits_amount=intent.amount,
            operation_type=intent.operation,
            metadata=dict(intent.metadata),
            created_at=SANDBOX_EPOCH,
        )

    # ------------------------------------------------------------------ users

    async def find_or_create_user(self, phone_identifier: str) -> tuple[UserData, bool]:
        if not phone_identifier or not phone_identifier.strip():
            raise ValueError("phone_identifier cannot be empty")
        return self._user(_sandbox_id("user", phone_identifier), phone_identifier), False

    async def check_user_credits(self, phone_identifier: str) -> CreditStatus:
        user, _ = await self.find_or_create_user(phone_identifier)
        return CreditStatus(
            can_proceed=True,
            credits_remaining=user.credits_remaining,
            free_trial_used=False,
            warning_level=self.policy.warning_level(user.credits_remaining),
        )

    async def get_user_stats(self, user_id: UUID) -> UserStats:
        return UserStats(
            total_seconds=0,
            total_words=0,
            total_transcriptions=0,
            credits_remaining=self.policy.free_trial_credits,
            free_trial_used=False,
        )

    async def mark_intro_seen(self, user_id: UUID) -> None:
        return None

    # ------------------------------------------------------------------ usage

    async def record_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> UsageRecord:
        intent = TranscriptionIntent(
            user_id=user_id,
            audio_seconds=audio_seconds,
            word_count=word_count,
            stt_cost=to_cost(stt_cost),
            delivery_cost=to_cost(delivery_cost),
        )
        logger.debug("sandbox_transcription_recorded", user_id=str(user_id))
        transcription = TranscriptionData(
            transcription_id=_sandbox_id("transcription", user_id),
            user_id=user_id,
            audio_seconds=intent.audio_seconds,
            word_count=intent.word_count,
            stt_cost=intent.stt_cost,
            delivery_cost=intent.delivery_cost,
            total_cost=intent.total_cost,
            created_at=SANDBOX_EPOCH,
        )
        return UsageRecord(
            transcription=transcription,
            user=self._user(user_id, credits_remaining=self.policy.free_trial_credits - 1),
        )

    # -------------------------------------------------------------- referrals

    async def redeem(self, code: str, redeeming_user: UserData | UUID) -> RedemptionResult:
        normalized = code.strip().upper() if isinstance(code, str) else None
        referee_id = (
            redeeming_user.user_id if isinstance(redeeming_user, UserData) else redeeming_user
        )
        logger.debug("sandbox_redemption", referral_code=normalized, referee_id=str(referee_id))

        if normalized in _REJECTIONS:
            return RedemptionResult.rejected(_REJECTIONS[normalized], normalized, sandbox=True)
        if normalized not in (SANDBOX_VALID_CODE, SANDBOX_LIMIT_REACHED_CODE):
            return RedemptionResult.rejected(RedemptionOutcome.INVALID_CODE, normalized, sandbox=True)

        amount = self.policy.referral_credit_amount
        limit_reached = normalized == SANDBOX_LIMIT_REACHED_CODE
        referee_credits = 0 if limit_reached else amount
        referee_remaining = (
            0 if limit_reached else self.policy.referral_lifetime_limit - referee_credits
        )
        return RedemptionResult(
            outcome=(
                RedemptionOutcome.REFEREE_LIMIT_REACHED
                if limit_reached
                else RedemptionOutcome.SUCCESS
            ),
            code=normalized,
            referrer=self._user(
                SANDBOX_REFERRER_ID,
                credits_remaining=self.policy.free_trial_credits + amount,
                referral_code=normalized,
                referral_code_uses=1,
            ),
            referee=self._user(
                referee_id, credits_remaining=self.policy.free_trial_credits + referee_credits
            ),
            referrer_credits_added=amount,
            referee_credits_added=referee_credits,
            code_uses_remaining=self.policy.code_uses_remaining(1),
            referee_remaining_referral_credits=referee_remaining,
            sandbox=True,
        )

    async def generate_code_for_user(self, user_id: UUID) -> str:
        return SANDBOX_VALID_CODE

    async def regenerate_code_for_user(self, user_id: UUID) -> str:
        return SANDBOX_VALID_CODE

    async def check_referral_credit_limit(self, user_id: UUID) -> ReferralLimitStatus:
        return ReferralLimitStatus(
            has_reached_limit=False,
            total_referral_credits=0,
            remaining_referral_credits=self.policy.referral_lifetime_limit,
        )

    # ---------------------------------------------------------------- credits

    async def add_credits(
        self,
        user_id: UUID,
        amount: int,
        operation: CreditOperation,
        metadata: dict[str, str] | None = None,
    ) -> CreditGrant:
        intent = CreditIntent(
            user_id=user_id, amount=amount, operation=operation, metadata=dict(metadata or {})
        )
        return CreditGrant(
            user=self._user(user_id, credits_remaining=self.policy.free_trial_credits + amount),
            transaction=self._transaction(intent),
        )

    async def record_payment(self, intent: PaymentIntent) -> PaymentReceipt:
        payment = PaymentData(
            payment_id=_sandbox_id("payment", intent.transaction_id),
            user_id=intent.user_id,
            amount=intent.amount,
            currency=intent.currency,
            credits_purchased=intent.credits_purchased,
            payment_method=intent.payment_method,
            transaction_id=intent.transaction_id,
            created_at=SANDBOX_EPOCH,
        )
        credit = CreditIntent(
            user_id=intent.user_id,
            amount=intent.credits_purchased,
            operation=CreditOperation.PAYMENT,
            metadata={"transaction_id": intent.transaction_id},
        )
        return PaymentReceipt(
            payment=payment,
            transaction=self._transaction(credit),
            user=self._user(
                intent.user_id,
                credits_remaining=self.policy.free_trial_credits + intent.credits_purchased,
            ),
        )

    async def estimate_months_remaining(self, user_id: UUID) -> int:
        return self.policy.default_usage_estimate_months
