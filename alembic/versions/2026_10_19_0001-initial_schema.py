"""initial schema

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the ledger schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('phone_identifier', sa.String(64), nullable=False),
        sa.Column('credits_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('free_trial_used', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('has_seen_intro', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_seconds', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('referral_code', sa.String(6), nullable=True),
        sa.Column('referral_code_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),

        # Constraints
        sa.UniqueConstraint('phone_identifier', name='users_phone_identifier_key'),
        sa.UniqueConstraint('referral_code', name='users_referral_code_key'),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_users_credits_non_negative'),
        sa.CheckConstraint('usage_count >= 0', name='ck_users_usage_count_non_negative'),
        sa.CheckConstraint('total_seconds >= 0', name='ck_users_total_seconds_non_negative'),
        sa.CheckConstraint('referral_code_uses >= 0', name='ck_users_referral_code_uses_non_negative'),
    )

    op.create_index('idx_users_updated_at', 'users', ['updated_at'])

    # ========================================================================
    # Create transcriptions table
    # ========================================================================
    op.create_table(
        'transcriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('audio_seconds', sa.Integer(), nullable=False),
        sa.Column('word_count', sa.Integer(), nullable=False),
        sa.Column('stt_cost', sa.Numeric(12, 6), nullable=False),
        sa.Column('delivery_cost', sa.Numeric(12, 6), nullable=False),
        sa.Column('total_cost', sa.Numeric(12, 6), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('audio_seconds >= 0', name='ck_transcriptions_audio_non_negative'),
        sa.CheckConstraint('word_count >= 0', name='ck_transcriptions_words_non_negative'),
    )

    op.create_index('ix_transcriptions_user_id', 'transcriptions', ['user_id'])
    op.create_index('idx_transcriptions_user_created', 'transcriptions', ['user_id', 'created_at'])

    # ========================================================================
    # Create credit_transactions table (append-only)
    # ========================================================================
    op.create_table(
        'credit_transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('credits_amount', sa.Integer(), nullable=False),
        sa.Column('operation_type', sa.String(32), nullable=False),
        sa.Column('metadata', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(
            "operation_type IN ('payment', 'referral_bonus', 'referral_received', 'initial_free', 'promotional')",
            name='ck_credit_transactions_operation_type',
        ),
    )

    op.create_index('ix_credit_transactions_user_id', 'credit_transactions', ['user_id'])
    op.create_index('idx_credit_transactions_user_type', 'credit_transactions', ['user_id', 'operation_type'])
    op.create_index('idx_credit_transactions_created_at', 'credit_transactions', ['created_at'])

    # ========================================================================
    # Create referrals table
    # ========================================================================
    op.create_table(
        'referrals',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('referrer_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('referee_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('referrer_credits', sa.Integer(), nullable=False),
        sa.Column('referee_credits', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # One relationship per ordered pair - replays hit this constraint
        sa.UniqueConstraint('referrer_id', 'referee_id', name='uq_referrals_pair'),
        sa.CheckConstraint('referrer_id <> referee_id', name='ck_referrals_not_self'),
        sa.CheckConstraint('referrer_credits >= 0', name='ck_referrals_referrer_credits'),
        sa.CheckConstraint('referee_credits >= 0', name='ck_referrals_referee_credits'),
    )

    op.create_index('idx_referrals_referee_id', 'referrals', ['referee_id'])

    # ========================================================================
    # Create payments table
    # ========================================================================
    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='GBP'),
        sa.Column('credits_purchased', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=False),
        sa.Column('transaction_id', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('transaction_id', name='payments_transaction_id_key'),
        sa.CheckConstraint('credits_purchased > 0', name='ck_payments_credits_positive'),
        sa.CheckConstraint('amount >= 0', name='ck_payments_amount_non_negative'),
    )

    op.create_index('ix_payments_user_id', 'payments', ['user_id'])


def downgrade() -> None:
    """Drop the ledger schema."""
    op.drop_table('payments')
    op.drop_table('referrals')
    op.drop_table('credit_transactions')
    op.drop_table('transcriptions')
    op.drop_table('users')
