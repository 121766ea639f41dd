"""
Payments - credits purchased through the payment provider.
"""

from voiceledger.exceptions import DuplicateKeyError, IdempotencyConflictError, UserNotFoundError
from voiceledger.models.domain import CreditIntent, PaymentIntent, PaymentReceipt
from voiceledger.models.enums import CreditOperation
from voiceledger.observability import get_logger, metrics
from voiceledger.services.credits import CreditManager
from voiceledger.store.base import LedgerStore

logger = get_logger(__name__)


class PaymentService:
    """Records payments and credits the purchased amount atomically."""

    def __init__(self, store: LedgerStore, credit_manager: CreditManager) -> None:
        self.store = store
        self.credit_manager = credit_manager

    async def record_payment(self, intent: PaymentIntent) -> PaymentReceipt:
        """
        Record a settled payment and grant its credits.

        Raises:
            IdempotencyConflictError: transaction_id was already recorded
            UserNotFoundError: user doesn't exist (nothing is written)
        """
        try:
            with metrics.track("record_payment"):
                async with self.store.transaction() as tx:
                    existing = await tx.find_payment_by_transaction_id(intent.transaction_id)
                    if existing is not None:
                        raise IdempotencyConflictError(existing.payment_id)
                    if await tx.get_user(intent.user_id, for_update=True) is None:
                        raise UserNotFoundError(intent.user_id)

                    payment = await tx.insert_payment(
                        intent.user_id,
                        intent.amount,
                        intent.currency,
                        intent.credits_purchased,
                        intent.payment_method,
                        intent.transaction_id,
                    )
                    grant = await self.credit_manager.grant_in(
                        tx,
                        CreditIntent(
                            user_id=intent.user_id,
                            amount=intent.credits_purchased,
                            operation=CreditOperation.PAYMENT,
                            metadata={
                                "payment_id": str(payment.payment_id),
                                "transaction_id": intent.transaction_id,
                                "payment_method": intent.payment_method,
                            },
                        ),
                    )
        except DuplicateKeyError as e:
            # Concurrent replay committed first
            async with self.store.transaction() as tx:
                existing = await tx.find_payment_by_transaction_id(intent.transaction_id)
            if existing is None:
                raise
            raise IdempotencyConflictError(existing.payment_id) from e

        logger.info(
            "payment_recorded",
            user_id=str(intent.user_id),
            payment_id=str(payment.payment_id),
            amount=str(intent.amount),
            currency=intent.currency,
            credits_purchased=intent.credits_purchased,
        )
        return PaymentReceipt(payment=payment, transaction=grant.transaction, user=grant.user)
