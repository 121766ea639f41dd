"""
Credit Manager - the only writer of balance increments and credit transactions.

Every grant inserts the credit transaction first and then increments the user's
balance inside the same ledger transaction, so a missing user rolls back the
transaction row as well.
"""

import math
from datetime import datetime
from uuid import UUID

from voiceledger.exceptions import UserNotFoundError
from voiceledger.models.domain import CreditGrant, CreditIntent, ReferralLimitStatus, UserData
from voiceledger.models.enums import CreditOperation
from voiceledger.observability import get_logger, metrics
from voiceledger.services.policy import LedgerPolicy
from voiceledger.store.base import LedgerSession, LedgerStore

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400
DAYS_PER_MONTH = 30
# Horizon used when the user has history but no measurable cadence
IDLE_HORIZON_DAYS = 90
MIN_ESTIMATE_MONTHS = 1
MAX_ESTIMATE_MONTHS = 12


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; 2.5 months should read as 3
    return math.floor(value + 0.5)


class CreditManager:
    """Atomic credit grants, the referral lifetime cap and usage estimates."""

    def __init__(self, store: LedgerStore, policy: LedgerPolicy) -> None:
        self.store = store
        self.policy = policy

    async def add_credits(
        self,
        user_id: UUID,
        amount: int,
        operation: CreditOperation,
        metadata: dict[str, str] | None = None,
    ) -> CreditGrant:
        """
        Grant credits to a user in a transaction of its own.

        Raises:
            ValueError: amount is not a positive integer (nothing is written)
            UserNotFoundError: user doesn't exist (nothing is written)
        """
        intent = CreditIntent(
            user_id=user_id,
            amount=amount,
            operation=operation,
            metadata=dict(metadata or {}),
        )
        with metrics.track("add_credits"):
            async with self.store.transaction() as tx:
                return await self.grant_in(tx, intent)

    async def grant_in(self, tx: LedgerSession, intent: CreditIntent) -> CreditGrant:
        """Apply a credit grant inside a caller-owned transaction."""
        # Lock first so a missing user fails before the foreign key does
        if await tx.get_user(intent.user_id, for_update=True) is None:
            raise UserNotFoundError(intent.user_id)

        transaction = await tx.insert_credit_transaction(
            intent.user_id, intent.amount, intent.operation, intent.metadata
        )
        user = await tx.increment_credits(intent.user_id, intent.amount)
        if user is None:
            # Propagating rolls back the transaction row inserted above
            raise UserNotFoundError(intent.user_id)

        metrics.credits_added_total.labels(operation_type=intent.operation.value).inc(intent.amount)
        logger.info(
            "credits_added",
            user_id=str(intent.user_id),
            amount=intent.amount,
            operation_type=intent.operation.value,
            credits_remaining=user.credits_remaining,
        )
        return CreditGrant(user=user, transaction=transaction)

    async def referral_limit_in(self, tx: LedgerSession, user_id: UUID) -> ReferralLimitStatus:
        """Evaluate the lifetime referral cap inside a caller-owned transaction."""
        total = await tx.sum_credits(user_id, CreditOperation.referral_types())
        remaining = max(0, self.policy.referral_lifetime_limit - total)
        return ReferralLimitStatus(
            has_reached_limit=remaining == 0,
            total_referral_credits=total,
            remaining_referral_credits=remaining,
        )

    async def check_referral_credit_limit(self, user_id: UUID) -> ReferralLimitStatus:
        async with self.store.transaction() as tx:
            return await self.referral_limit_in(tx, user_id)

    def should_issue_referral_code(self, user: UserData) -> bool:
        return self.policy.should_issue_referral_code(user)

    async def estimate_months_remaining(self, user_id: UUID) -> int:
        """
        Estimate how long a fresh free trial would last at the user's cadence.

        Advisory only: any failure, or a user without history, yields the
        configured default.
        """
        default = self.policy.default_usage_estimate_months
        try:
            async with self.store.transaction() as tx:
                stats = await tx.transcription_stats(user_id)
            if not stats.total_transcriptions or stats.first_at is None or stats.last_at is None:
                return default
            return self._months_from_cadence(
                stats.total_transcriptions, stats.first_at, stats.last_at
            )
        except Exception as e:
            logger.warning("usage_estimate_failed", user_id=str(user_id), error=str(e))
            return default

    def _months_from_cadence(self, count: int, first_at: datetime, last_at: datetime) -> int:
        elapsed_days = (last_at - first_at).total_seconds() / SECONDS_PER_DAY
        days = max(1, _round_half_up(elapsed_days))
        rate = count / days

        days_for_trial = self.policy.free_trial_credits / rate if rate > 0 else IDLE_HORIZON_DAYS
        months = _round_half_up(days_for_trial / DAYS_PER_MONTH)
        return max(MIN_ESTIMATE_MONTHS, min(MAX_ESTIMATE_MONTHS, months))
