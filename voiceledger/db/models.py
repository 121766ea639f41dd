"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Column types are portable
(Uuid, JSON with a JSONB variant) so the same metadata runs on PostgreSQL in
production and SQLite in tests.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from voiceledger.models.enums import CreditOperation


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    One row per WhatsApp phone identifier; holds the current balance projection.
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity
    phone_identifier: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Balance
    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    free_trial_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Onboarding
    has_seen_intro: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Usage counters
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Referral
    referral_code: Mapped[str | None] = mapped_column(String(6), nullable=True, unique=True)
    referral_code_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_users_credits_non_negative"),
        CheckConstraint("usage_count >= 0", name="ck_users_usage_count_non_negative"),
        CheckConstraint("total_seconds >= 0", name="ck_users_total_seconds_non_negative"),
        CheckConstraint("referral_code_uses >= 0", name="ck_users_referral_code_uses_non_negative"),
        Index("idx_users_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<User(id={self.id}, phone_identifier={self.phone_identifier}, "
            f"credits_remaining={self.credits_remaining})>"
        )


class Transcription(Base):
    """
    ORM model for transcriptions table.

    Immutable audit trail of delivered transcriptions.
    """

    __tablename__ = "transcriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    audio_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Costs in the provider's currency
    stt_cost: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    delivery_cost: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("audio_seconds >= 0", name="ck_transcriptions_audio_non_negative"),
        CheckConstraint("word_count >= 0", name="ck_transcriptions_words_non_negative"),
        Index("idx_transcriptions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Transcription(id={self.id}, user_id={self.user_id}, "
            f"audio_seconds={self.audio_seconds})>"
        )


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Append-only ledger of all credit additions.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    credits_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    operation_type: Mapped[CreditOperation] = mapped_column(
        SQLEnum(
            CreditOperation,
            name="credit_operation",
            native_enum=False,
            length=32,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    # Note: Database column is "metadata", Python uses "details" to avoid the
    # Declarative reserved attribute
    details: Mapped[dict[str, str]] = mapped_column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_credit_transactions_user_type", "user_id", "operation_type"),
        Index("idx_credit_transactions_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"amount={self.credits_amount}, type={self.operation_type})>"
        )


class Referral(Base):
    """
    ORM model for referrals table.

    At most one row per (referrer, referee) pair.
    """

    __tablename__ = "referrals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    referrer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    referee_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    # Credits actually granted (may be clamped below the nominal amount)
    referrer_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    referee_credits: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("referrer_id", "referee_id", name="uq_referrals_pair"),
        CheckConstraint("referrer_id <> referee_id", name="ck_referrals_not_self"),
        CheckConstraint("referrer_credits >= 0", name="ck_referrals_referrer_credits"),
        CheckConstraint("referee_credits >= 0", name="ck_referrals_referee_credits"),
        Index("idx_referrals_referee_id", "referee_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Referral(id={self.id}, referrer={self.referrer_id}, referee={self.referee_id})>"


class Payment(Base):
    """
    ORM model for payments table.

    One row per settled provider transaction.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    credits_purchased: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_purchased > 0", name="ck_payments_credits_positive"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Payment(id={self.id}, user_id={self.user_id}, "
            f"credits={self.credits_purchased}, transaction_id={self.transaction_id})>"
        )
