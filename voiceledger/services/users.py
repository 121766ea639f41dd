"""
User Registry - lazy user creation, the credit gate and usage stats.
"""

from uuid import UUID

from voiceledger.exceptions import DuplicateKeyError, UserNotFoundError, WriteVerificationError
from voiceledger.models.domain import CreditIntent, CreditStatus, UserData, UserStats
from voiceledger.models.enums import CreditOperation
from voiceledger.observability import get_logger, metrics
from voiceledger.services.credits import CreditManager
from voiceledger.services.policy import LedgerPolicy
from voiceledger.store.base import LedgerStore

logger = get_logger(__name__)


class UserService:
    """Users keyed by phone identifier."""

    def __init__(self, store: LedgerStore, credit_manager: CreditManager, policy: LedgerPolicy) -> None:
        self.store = store
        self.credit_manager = credit_manager
        self.policy = policy

    async def find_or_create_user(self, phone_identifier: str) -> tuple[UserData, bool]:
        """
        Find a user by phone identifier, creating them on first contact.

        New users receive the free trial as an `initial_free` credit transaction
        in the same transaction as the insert. Returns (user, created).
        """
        if not phone_identifier or not phone_identifier.strip():
            raise ValueError("phone_identifier cannot be empty")

        async with self.store.transaction() as tx:
            existing = await tx.get_user_by_phone(phone_identifier)
        if existing is not None:
            return existing, False

        try:
            with metrics.track("create_user"):
                async with self.store.transaction() as tx:
                    user = await tx.create_user(phone_identifier)
                    if self.policy.free_trial_credits > 0:
                        grant = await self.credit_manager.grant_in(
                            tx,
                            CreditIntent(
                                user_id=user.user_id,
                                amount=self.policy.free_trial_credits,
                                operation=CreditOperation.INITIAL_FREE,
                            ),
                        )
                        user = grant.user
        except DuplicateKeyError as e:
            # Race condition - user created by another request
            logger.info("user_creation_race", phone_identifier=phone_identifier)
            async with self.store.transaction() as tx:
                existing = await tx.get_user_by_phone(phone_identifier)
            if existing is None:
                raise WriteVerificationError(f"User creation failed: {e}") from e
            return existing, False

        logger.info(
            "user_created",
            user_id=str(user.user_id),
            credits_remaining=user.credits_remaining,
        )
        return user, True

    async def check_user_credits(self, phone_identifier: str) -> CreditStatus:
        """Gate evaluated before any transcription cost is incurred."""
        user, _ = await self.find_or_create_user(phone_identifier)
        return CreditStatus(
            can_proceed=user.credits_remaining > 0,
            credits_remaining=user.credits_remaining,
            free_trial_used=user.free_trial_used,
            warning_level=self.policy.warning_level(user.credits_remaining),
        )

    async def get_user_stats(self, user_id: UUID) -> UserStats:
        async with self.store.transaction() as tx:
            user = await tx.get_user(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            stats = await tx.transcription_stats(user_id)

        return UserStats(
            total_seconds=user.total_seconds,
            total_words=stats.total_words,
            total_transcriptions=stats.total_transcriptions,
            credits_remaining=user.credits_remaining,
            free_trial_used=user.free_trial_used,
        )

    async def mark_intro_seen(self, user_id: UUID) -> None:
        async with self.store.transaction() as tx:
            if not await tx.mark_intro_seen(user_id):
                raise UserNotFoundError(user_id)
