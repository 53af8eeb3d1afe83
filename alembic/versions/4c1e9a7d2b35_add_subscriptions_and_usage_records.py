"""add_subscriptions_and_usage_records

Revision ID: 4c1e9a7d2b35
Revises:
Create Date: 2026-10-19 09:12:44.118203

Tables:
- subscriptions: one row per account; plan, status, validity window and
  payment-provider ids
- usage_records: per (account, feature, period start) usage counters
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1e9a7d2b35'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create subscription and usage ledger tables."""

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('account_id', sa.String(320), nullable=False),

        # Subscription details
        sa.Column('plan_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),

        # Validity window
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),

        # External platform IDs
        sa.Column('external_membership_id', sa.String(255), nullable=True),
        sa.Column('external_product_id', sa.String(255), nullable=True),

        # Lifecycle timestamps
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),

        # Standard timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_subscriptions'),
    )

    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    # ON CONFLICT target for the lifecycle upsert
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id'], unique=True)
    op.create_index('ix_subscriptions_external_membership_id', 'subscriptions', ['external_membership_id'])
    # Expiry sweep: WHERE status = 'active' AND ends_at <= now
    op.create_index('idx_subscription_status_ends_at', 'subscriptions', ['status', 'ends_at'])

    op.create_table(
        'usage_records',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('account_id', sa.String(320), nullable=False),
        sa.Column('feature_type', sa.String(50), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),

        # Period key; daily rows have period_start == period_end
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('last_reset_date', sa.Date(), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id', name='pk_usage_records'),
        # ON CONFLICT target for the atomic increment
        sa.UniqueConstraint(
            'account_id', 'feature_type', 'period_start',
            name='uq_usage_records_account_feature_period',
        ),
        sa.CheckConstraint('usage_count >= 0', name='ck_usage_records_usage_count_non_negative'),
    )

    op.create_index('ix_usage_records_id', 'usage_records', ['id'])
    op.create_index('ix_usage_records_account_id', 'usage_records', ['account_id'])


def downgrade() -> None:
    """Drop subscription and usage ledger tables."""
    op.drop_index('ix_usage_records_account_id', table_name='usage_records')
    op.drop_index('ix_usage_records_id', table_name='usage_records')
    op.drop_table('usage_records')

    op.drop_index('idx_subscription_status_ends_at', table_name='subscriptions')
    op.drop_index('ix_subscriptions_external_membership_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_account_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_id', table_name='subscriptions')
    op.drop_table('subscriptions')
