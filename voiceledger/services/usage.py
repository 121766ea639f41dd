"""
Usage Accounting - turns a delivered transcription into a ledger effect.
"""

from decimal import Decimal
from uuid import UUID

from voiceledger.exceptions import UserNotFoundError
from voiceledger.models.domain import (
    LowBalanceContext,
    TranscriptionIntent,
    UsageRecord,
    UserData,
    to_cost,
)
from voiceledger.observability import get_logger, metrics
from voiceledger.services.credits import CreditManager
from voiceledger.services.hooks import run_after_commit
from voiceledger.services.policy import LedgerPolicy
from voiceledger.services.referrals import ReferralEngine
from voiceledger.store.base import LedgerStore

logger = get_logger(__name__)


class UsageAccounting:
    """
    Records delivered transcriptions.

    Only call this once the reply has been handed to the outbound transport;
    a reply that never went out must not cost a credit.
    """

    def __init__(
        self,
        store: LedgerStore,
        credit_manager: CreditManager,
        referral_engine: ReferralEngine,
        policy: LedgerPolicy,
    ) -> None:
        self.store = store
        self.credit_manager = credit_manager
        self.referral_engine = referral_engine
        self.policy = policy

    async def record_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> UsageRecord:
        """
        Write the transcription and consume one credit in a single transaction.

        Referral code issuance and the low balance context are worked out after
        the commit; neither can fail this call. Both are awaited inline so the
        result can carry the issued code, which means a slow store can delay
        the return by up to twice `post_commit_timeout`. Floats are accepted
        for costs and converted through `to_cost`.

        Raises:
            ValueError: negative duration, word count or cost
            UserNotFoundError: user doesn't exist (nothing is written)
        """
        intent = TranscriptionIntent(
            user_id=user_id,
            audio_seconds=audio_seconds,
            word_count=word_count,
            stt_cost=to_cost(stt_cost),
            delivery_cost=to_cost(delivery_cost),
        )

        with metrics.track("record_transcription"):
            async with self.store.transaction() as tx:
                user = await tx.apply_transcription_usage(intent.user_id, intent.audio_seconds)
                if user is None:
                    raise UserNotFoundError(intent.user_id)
                transcription = await tx.insert_transcription(
                    intent.user_id,
                    intent.audio_seconds,
                    intent.word_count,
                    intent.stt_cost,
                    intent.delivery_cost,
                )

        metrics.transcriptions_recorded_total.inc()
        logger.info(
            "transcription_recorded",
            user_id=str(user_id),
            transcription_id=str(transcription.transcription_id),
            audio_seconds=intent.audio_seconds,
            word_count=intent.word_count,
            total_cost=str(transcription.total_cost),
            credits_remaining=user.credits_remaining,
            free_trial_used=user.free_trial_used,
        )

        referral_code = user.referral_code
        if self.credit_manager.should_issue_referral_code(user):
            referral_code = await run_after_commit(
                "issue_referral_code",
                lambda: self.referral_engine.generate_code_for_user(user_id),
                default=user.referral_code,
                timeout=self.policy.post_commit_timeout,
            )

        low_balance = None
        if user.credits_remaining == self.policy.low_balance_notice_credits:
            low_balance = await self._low_balance_context(user, referral_code)

        return UsageRecord(
            transcription=transcription,
            user=user,
            referral_code=referral_code,
            low_balance=low_balance,
        )

    async def _low_balance_context(
        self, user: UserData, referral_code: str | None
    ) -> LowBalanceContext:
        months = await run_after_commit(
            "estimate_months_remaining",
            lambda: self.credit_manager.estimate_months_remaining(user.user_id),
            default=self.policy.default_usage_estimate_months,
            timeout=self.policy.post_commit_timeout,
        )
        return LowBalanceContext(
            credits_remaining=user.credits_remaining,
            referral_code=referral_code,
            estimated_months=months,
        )
