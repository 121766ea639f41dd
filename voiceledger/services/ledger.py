"""
Ledger composition - wires the services over one store.

    gateway = build_ledger_gateway(settings)
    ledger = gateway.for_context(CallContext(sandbox=request_is_test))
    status = await ledger.check_user_credits(phone)
"""

from decimal import Decimal
from uuid import UUID

from voiceledger.config import Settings, get_settings
from voiceledger.db.session import Database
from voiceledger.models.domain import (
    CallContext,
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
from voiceledger.observability import get_logger
from voiceledger.services.base import Ledger
from voiceledger.services.credits import CreditManager
from voiceledger.services.payments import PaymentService
from voiceledger.services.policy import LedgerPolicy
from voiceledger.services.referrals import ReferralEngine
from voiceledger.services.sandbox import SandboxLedger
from voiceledger.services.usage import UsageAccounting
from voiceledger.services.users import UserService
from voiceledger.store.base import LedgerStore
from voiceledger.store.memory import InMemoryLedgerStore
from voiceledger.store.sql import SqlLedgerStore

logger = get_logger(__name__)


class LiveLedger(Ledger):
    """Ledger backed by a real store."""

    def __init__(self, store: LedgerStore, policy: LedgerPolicy) -> None:
        self.store = store
        self.policy = policy
        self.credits = CreditManager(store, policy)
        self.referrals = ReferralEngine(store, self.credits, policy)
        self.usage = UsageAccounting(store, self.credits, self.referrals, policy)
        self.users = UserService(store, self.credits, policy)
        self.payments = PaymentService(store, self.credits)

    async def find_or_create_user(self, phone_identifier: str) -> tuple[UserData, bool]:
        return await self.users.find_or_create_user(phone_identifier)

    async def check_user_credits(self, phone_identifier: str) -> CreditStatus:
        return await self.users.check_user_credits(phone_identifier)

    async def get_user_stats(self, user_id: UUID) -> UserStats:
        return await self.users.get_user_stats(user_id)

    async def mark_intro_seen(self, user_id: UUID) -> None:
        await self.users.mark_intro_seen(user_id)

    async def record_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> UsageRecord:
        return await self.usage.record_transcription(
            user_id, audio_seconds, word_count, stt_cost, delivery_cost
        )

    async def redeem(self, code: str, redeeming_user: UserData | UUID) -> RedemptionResult:
        return await self.referrals.redeem(code, redeeming_user)

    async def generate_code_for_user(self, user_id: UUID) -> str:
        return await self.referrals.generate_code_for_user(user_id)

    async def regenerate_code_for_user(self, user_id: UUID) -> str:
        return await self.referrals.regenerate_code_for_user(user_id)

    async def add_credits(
        self,
        user_id: UUID,
        amount: int,
        operation: CreditOperation,
        metadata: dict[str, str] | None = None,
    ) -> CreditGrant:
        return await self.credits.add_credits(user_id, amount, operation, metadata)

    async def record_payment(self, intent: PaymentIntent) -> PaymentReceipt:
        return await self.payments.record_payment(intent)

    async def check_referral_credit_limit(self, user_id: UUID) -> ReferralLimitStatus:
        return await self.credits.check_referral_credit_limit(user_id)

    async def estimate_months_remaining(self, user_id: UUID) -> int:
        return await self.credits.estimate_months_remaining(user_id)


class LedgerGateway:
    """Chooses the live or sandbox ledger once per call context."""

    def __init__(self, live: LiveLedger, sandbox: SandboxLedger) -> None:
        self.live = live
        self.sandbox = sandbox

    def for_context(self, context: CallContext | None = None) -> Ledger:
        if context is not None and context.sandbox:
            return self.sandbox
        return self.live

    async def close(self) -> None:
        await self.live.store.close()


def create_store(settings: Settings) -> LedgerStore:
    """Build the store selected by LEDGER_BACKEND."""
    if settings.ledger_backend == "memory":
        logger.info("ledger_store_created", backend="memory")
        return InMemoryLedgerStore(lock_timeout=settings.memory_lock_timeout)

    logger.info(
        "ledger_store_created",
        backend="postgres",
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    return SqlLedgerStore(Database.from_settings(settings))


def build_ledger_gateway(
    settings: Settings | None = None, store: LedgerStore | None = None
) -> LedgerGateway:
    """Composition root: one store, one policy, both ledgers."""
    settings = settings or get_settings()
    policy = LedgerPolicy.from_settings(settings)
    live = LiveLedger(store or create_store(settings), policy)
    return LedgerGateway(live=live, sandbox=SandboxLedger(policy))
