"""
SQL Ledger Store - async SQLAlchemy implementation of the ledger store.

Row locks are taken with SELECT ... FOR UPDATE. Unique constraints on phone
identifier, referral code, referral pair and payment transaction id turn
concurrent duplicates into DuplicateKeyError.
"""

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from voiceledger.db.models import CreditTransaction, Payment, Referral, Transcription, User
from voiceledger.db.session import Database
from voiceledger.exceptions import (
    ConcurrencyError,
    DatabaseError,
    DataIntegrityError,
    DuplicateKeyError,
    LedgerError,
    StoreTimeoutError,
    WriteVerificationError,
)
from voiceledger.models.domain import (
    CreditTransactionData,
    PaymentData,
    ReferralData,
    TranscriptionData,
    TranscriptionStats,
    UserData,
)
from voiceledger.models.enums import CreditOperation
from voiceledger.observability import get_logger, metrics
from voiceledger.store.base import LedgerSession, LedgerStore

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _constraint_name(exc: IntegrityError, message: str) -> str:
    """Best-effort constraint name (asyncpg exposes it, SQLite only in the message)."""
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return str(name)
    return message


def translate_db_error(exc: SQLAlchemyError) -> LedgerError:
    """Map a SQLAlchemy/driver error onto the ledger error taxonomy."""
    message = str(getattr(exc, "orig", None) or exc)
    lowered = message.lower()

    if isinstance(exc, IntegrityError):
        if "unique" in lowered or "duplicate" in lowered:
            return DuplicateKeyError(_constraint_name(exc, message))
        return DataIntegrityError(message)

    if isinstance(exc, PoolTimeoutError):
        return StoreTimeoutError("connection checkout")

    if "deadlock" in lowered or "could not serialize" in lowered:
        return ConcurrencyError("ledger transaction")

    if "statement timeout" in lowered or "canceling statement" in lowered:
        return StoreTimeoutError("statement")

    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return DatabaseError(message, retryable=True)

    return DatabaseError(message, retryable=isinstance(exc, OperationalError))


# ============================================================================
# ORM -> domain
# ============================================================================


def _user_to_domain(user: User) -> UserData:
    return UserData(
        user_id=user.id,
        phone_identifier=user.phone_identifier,
        credits_remaining=user.credits_remaining,
        free_trial_used=user.free_trial_used,
        has_seen_intro=user.has_seen_intro,
        usage_count=user.usage_count,
        total_seconds=user.total_seconds,
        referral_code=user.referral_code,
        referral_code_uses=user.referral_code_uses,
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_used_at=user.last_used_at,
    )


def _transaction_to_domain(row: CreditTransaction) -> CreditTransactionData:
    return CreditTransactionData(
        transaction_id=row.id,
        user_id=row.user_id,
        credits_amount=row.credits_amount,
        operation_type=CreditOperation(row.operation_type),
        metadata=dict(row.details or {}),
        created_at=row.created_at,
    )


def _referral_to_domain(row: Referral) -> ReferralData:
    return ReferralData(
        referral_id=row.id,
        referrer_id=row.referrer_id,
        referee_id=row.referee_id,
        referrer_credits=row.referrer_credits,
        referee_credits=row.referee_credits,
        created_at=row.created_at,
    )


def _transcription_to_domain(row: Transcription) -> TranscriptionData:
    return TranscriptionData(
        transcription_id=row.id,
        user_id=row.user_id,
        audio_seconds=row.audio_seconds,
        word_count=row.word_count,
        stt_cost=Decimal(row.stt_cost),
        delivery_cost=Decimal(row.delivery_cost),
        total_cost=Decimal(row.total_cost),
        created_at=row.created_at,
    )


def _payment_to_domain(row: Payment) -> PaymentData:
    return PaymentData(
        payment_id=row.id,
        user_id=row.user_id,
        amount=Decimal(row.amount),
        currency=row.currency,
        credits_purchased=row.credits_purchased,
        payment_method=row.payment_method,
        transaction_id=row.transaction_id,
        created_at=row.created_at,
    )


# ============================================================================
# Session
# ============================================================================


class SqlLedgerSession(LedgerSession):
    """Ledger operations bound to one AsyncSession transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _load_user(self, user_id: UUID, *, for_update: bool = False) -> User | None:
        stmt = select(User).where(User.id == user_id)
        if for_update:
            # Re-read under the lock even if an earlier read is in the identity map
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _require_locked_user(self, user_id: UUID) -> User:
        user = await self._load_user(user_id, for_update=True)
        if user is None:
            raise WriteVerificationError(f"User {user_id} disappeared inside transaction")
        return user

    # ------------------------------------------------------------------ users

    async def get_user(self, user_id: UUID, *, for_update: bool = False) -> UserData | None:
        user = await self._load_user(user_id, for_update=for_update)
        return _user_to_domain(user) if user else None

    async def get_user_by_phone(self, phone_identifier: str) -> UserData | None:
        stmt = select(User).where(User.phone_identifier == phone_identifier)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        return _user_to_domain(user) if user else None

    async def create_user(self, phone_identifier: str) -> UserData:
        user = User(
            phone_identifier=phone_identifier,
            credits_remaining=0,
            free_trial_used=False,
            has_seen_intro=False,
            usage_count=0,
            total_seconds=0,
            referral_code_uses=0,
        )
        self.session.add(user)
        await self.session.flush()
        return _user_to_domain(user)

    async def lock_users(self, user_ids: Iterable[UUID]) -> dict[UUID, UserData]:
        ids = sorted(set(user_ids))
        stmt = (
            select(User)
            .where(User.id.in_(ids))
            .order_by(User.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return {user.id: _user_to_domain(user) for user in result.scalars().all()}

    async def mark_intro_seen(self, user_id: UUID) -> bool:
        user = await self._load_user(user_id, for_update=True)
        if user is None:
            return False
        user.has_seen_intro = True
        await self.session.flush()
        return True

    # ------------------------------------------------------------ balances

    async def increment_credits(self, user_id: UUID, amount: int) -> UserData | None:
        user = await self._load_user(user_id, for_update=True)
        if user is None:
            return None

        credits_after = user.credits_remaining + amount
        user.credits_remaining = credits_after
        await self.session.flush()

        if user.credits_remaining != credits_after:
            raise DataIntegrityError(
                f"Credits mismatch: expected {credits_after}, got {user.credits_remaining}"
            )
        return _user_to_domain(user)

    async def apply_transcription_usage(self, user_id: UUID, audio_seconds: int) -> UserData | None:
        user = await self._load_user(user_id, for_update=True)
        if user is None:
            return None

        credits_after = user.credits_remaining - 1
        user.credits_remaining = max(0, credits_after)
        user.usage_count = user.usage_count + 1
        user.total_seconds = user.total_seconds + audio_seconds
        user.last_used_at = _utc_now()
        if credits_after <= 0:
            user.free_trial_used = True
        await self.session.flush()
        return _user_to_domain(user)

    async def insert_credit_transaction(
        self,
        user_id: UUID,
        credits_amount: int,
        operation: CreditOperation,
        metadata: dict[str, str],
    ) -> CreditTransactionData:
        row = CreditTransaction(
            user_id=user_id,
            credits_amount=credits_amount,
            operation_type=operation,
            details=dict(metadata),
        )
        self.session.add(row)
        await self.session.flush()
        return _transaction_to_domain(row)

    async def list_credit_transactions(self, user_id: UUID) -> list[CreditTransactionData]:
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at, CreditTransaction.id)
        )
        result = await self.session.execute(stmt)
        return [_transaction_to_domain(row) for row in result.scalars().all()]

    async def sum_credits(self, user_id: UUID, operations: Iterable[CreditOperation]) -> int:
        stmt = select(func.coalesce(func.sum(CreditTransaction.credits_amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.operation_type.in_(list(operations)),
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    # ------------------------------------------------------------ referrals

    async def find_user_by_referral_code(self, code: str) -> UserData | None:
        stmt = select(User).where(User.referral_code == code)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        return _user_to_domain(user) if user else None

    async def referral_code_exists(self, code: str) -> bool:
        stmt = select(User.id).where(User.referral_code == code).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def assign_referral_code(self, user_id: UUID, code: str) -> UserData:
        user = await self._require_locked_user(user_id)
        user.referral_code = code
        user.referral_code_uses = 0
        await self.session.flush()
        return _user_to_domain(user)

    async def increment_referral_code_uses(self, user_id: UUID) -> UserData:
        user = await self._require_locked_user(user_id)
        user.referral_code_uses = user.referral_code_uses + 1
        await self.session.flush()
        return _user_to_domain(user)

    async def find_referral(self, referrer_id: UUID, referee_id: UUID) -> ReferralData | None:
        stmt = select(Referral).where(
            Referral.referrer_id == referrer_id,
            Referral.referee_id == referee_id,
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _referral_to_domain(row) if row else None

    async def insert_referral(
        self,
        referrer_id: UUID,
        referee_id: UUID,
        referrer_credits: int,
        referee_credits: int,
    ) -> ReferralData:
        row = Referral(
            referrer_id=referrer_id,
            referee_id=referee_id,
            referrer_credits=referrer_credits,
            referee_credits=referee_credits,
        )
        self.session.add(row)
        await self.session.flush()
        return _referral_to_domain(row)

    # -------------------------------------------------------- transcriptions

    async def insert_transcription(
        self,
        user_id: UUID,
        audio_seconds: int,
        word_count: int,
        stt_cost: Decimal,
        delivery_cost: Decimal,
    ) -> TranscriptionData:
        row = Transcription(
            user_id=user_id,
            audio_seconds=audio_seconds,
            word_count=word_count,
            stt_cost=stt_cost,
            delivery_cost=delivery_cost,
            total_cost=Decimal(stt_cost) + Decimal(delivery_cost),
        )
        self.session.add(row)
        await self.session.flush()
        return _transcription_to_domain(row)

    async def transcription_stats(self, user_id: UUID) -> TranscriptionStats:
        stmt = select(
            func.count(Transcription.id),
            func.coalesce(func.sum(Transcription.word_count), 0),
            func.min(Transcription.created_at),
            func.max(Transcription.created_at),
        ).where(Transcription.user_id == user_id)
        result = await self.session.execute(stmt)
        count, words, first_at, last_at = result.one()
        return TranscriptionStats(
            total_transcriptions=int(count or 0),
            total_words=int(words or 0),
            first_at=first_at,
            last_at=last_at,
        )

    # --------------------------------------------------------------- payments

    async def find_payment_by_transaction_id(self, transaction_id: str) -> PaymentData | None:
        stmt = select(Payment).where(Payment.transaction_id == transaction_id)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _payment_to_domain(row) if row else None

    async def insert_payment(
        self,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        credits_purchased: int,
        payment_method: str,
        transaction_id: str,
    ) -> PaymentData:
        row = Payment(
            user_id=user_id,
            amount=amount,
            currency=currency,
            credits_purchased=credits_purchased,
            payment_method=payment_method,
            transaction_id=transaction_id,
        )
        self.session.add(row)
        await self.session.flush()
        return _payment_to_domain(row)


# ============================================================================
# Store
# ============================================================================


class SqlLedgerStore(LedgerStore):
    """Ledger store backed by a relational database."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[LedgerSession]:
        async with self.database.session() as session:
            try:
                yield SqlLedgerSession(session)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                error = translate_db_error(exc)
                metrics.store_errors_total.labels(error_type=type(error).__name__).inc()
                logger.warning(
                    "ledger_transaction_failed",
                    error_type=type(error).__name__,
                    retryable=error.retryable,
                    error=str(exc),
                )
                raise error from exc
            except TimeoutError as exc:
                await session.rollback()
                metrics.store_errors_total.labels(error_type="StoreTimeoutError").inc()
                raise StoreTimeoutError("statement") from exc
            except BaseException:
                # Business rejections, cancellation, programming errors
                await session.rollback()
                raise

    async def close(self) -> None:
        await self.database.dispose()
