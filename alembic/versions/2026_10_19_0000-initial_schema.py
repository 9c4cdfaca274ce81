"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ledger schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('is_creator', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('username', name='uq_users_username'),
    )

    # ========================================================================
    # Create creator_profiles table
    # ========================================================================
    op.create_table(
        'creator_profiles',
        sa.Column('user_id', UUID(as_uuid=True), primary_key=True),
        sa.Column('total_earnings_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('available_balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('pending_balance_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_payouts_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_payout_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_sales', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_account_id', sa.String(255), nullable=True),
        sa.Column('stripe_account_status', sa.String(20), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('total_earnings_minor >= 0', name='ck_creator_total_earnings_non_negative'),
        sa.CheckConstraint('available_balance_minor >= 0', name='ck_creator_available_balance_non_negative'),
        sa.CheckConstraint('pending_balance_minor >= 0', name='ck_creator_pending_balance_non_negative'),
        sa.CheckConstraint('total_payouts_minor >= 0', name='ck_creator_total_payouts_non_negative'),
        sa.CheckConstraint('total_sales >= 0', name='ck_creator_total_sales_non_negative'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_creator_profiles_user', ondelete='CASCADE'),
    )

    # ========================================================================
    # Create guides table
    # ========================================================================
    op.create_table(
        'guides',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('author_id', UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('pricing_type', sa.String(20), nullable=False, server_default='free'),
        sa.Column('price_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('purchases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revenue_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('average_rating', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("status IN ('draft', 'published', 'archived')", name='ck_guides_status'),
        sa.CheckConstraint("pricing_type IN ('free', 'paid', 'pay-what-you-want')", name='ck_guides_pricing_type'),
        sa.CheckConstraint('price_minor >= 0', name='ck_guides_price_non_negative'),
        sa.CheckConstraint('purchases >= 0', name='ck_guides_purchases_non_negative'),
        sa.CheckConstraint('revenue_minor >= 0', name='ck_guides_revenue_non_negative'),
        sa.UniqueConstraint('slug', name='uq_guides_slug'),
        sa.ForeignKeyConstraint(['author_id'], ['users.id'], name='fk_guides_author', ondelete='RESTRICT'),
    )

    op.create_index('ix_guides_author_id', 'guides', ['author_id'])
    op.create_index('idx_guides_author_status', 'guides', ['author_id', 'status'])

    # ========================================================================
    # Create guide_purchases table
    # ========================================================================
    op.create_table(
        'guide_purchases',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('guide_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='free'),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='completed'),
        sa.Column('platform_fee_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('stripe_fee_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('creator_earnings_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('purchase_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('refund_id', sa.String(255), nullable=True),
        sa.Column('refund_amount_minor', sa.BigInteger(), nullable=True),
        sa.Column('refund_reason', sa.String(30), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount_minor >= 0', name='ck_purchase_amount_non_negative'),
        sa.CheckConstraint(
            'platform_fee_minor + stripe_fee_minor + creator_earnings_minor = amount_minor',
            name='ck_purchase_fee_breakdown_consistency',
        ),
        sa.CheckConstraint("status IN ('completed', 'failed', 'refunded')", name='ck_purchase_status'),
        sa.CheckConstraint("payment_method IN ('free', 'stripe', 'pwyw')", name='ck_purchase_payment_method'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_guide_purchases_user', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['guide_id'], ['guides.id'], name='fk_guide_purchases_guide', ondelete='RESTRICT'),
    )

    # At most one completed purchase per (user, guide)
    op.create_index(
        'uq_guide_purchases_user_guide_completed',
        'guide_purchases',
        ['user_id', 'guide_id'],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
    )
    op.create_index('ix_guide_purchases_guide_id', 'guide_purchases', ['guide_id'])
    op.create_index('idx_guide_purchases_user_id', 'guide_purchases', ['user_id'])
    op.create_index('idx_guide_purchases_purchase_date', 'guide_purchases', ['purchase_date'])
    op.create_index('uq_guide_purchases_transaction_id', 'guide_purchases', ['transaction_id'], unique=True, postgresql_where=sa.text('transaction_id IS NOT NULL'))

    # ========================================================================
    # Create payouts table
    # ========================================================================
    op.create_table(
        'payouts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('creator_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('stripe_transfer_id', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('estimated_arrival', sa.String(50), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount_minor > 0', name='ck_payout_amount_positive'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name='ck_payout_status',
        ),
        sa.CheckConstraint("method IN ('stripe', 'paypal', 'bank', 'check', 'manual')", name='ck_payout_method'),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id'], name='fk_payouts_creator', ondelete='RESTRICT'),
    )

    op.create_index('ix_payouts_creator_id', 'payouts', ['creator_id'])
    op.create_index('idx_payouts_creator_created', 'payouts', ['creator_id', 'created_at'])

    # ========================================================================
    # Create notifications table
    # ========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('recipient_id', UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(10), nullable=False, server_default='normal'),
        sa.Column('related_collection', sa.String(50), nullable=True),
        sa.Column('related_id', UUID(as_uuid=True), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], name='fk_notifications_recipient', ondelete='CASCADE'),
    )

    op.create_index('ix_notifications_recipient_id', 'notifications', ['recipient_id'])

    # ========================================================================
    # Create ledger_reconciliation_records table
    # ========================================================================
    op.create_table(
        'ledger_reconciliation_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('operation', sa.String(30), nullable=False),
        sa.Column('purchase_id', UUID(as_uuid=True), nullable=True),
        sa.Column('subject_id', UUID(as_uuid=True), nullable=True),
        sa.Column('amount_minor', sa.BigInteger(), nullable=True),
        sa.Column('error', sa.Text(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_index(
        'idx_reconciliation_unresolved',
        'ledger_reconciliation_records',
        ['created_at'],
        postgresql_where=sa.text('resolved = false'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('ledger_reconciliation_records')
    op.drop_table('notifications')
    op.drop_table('payouts')
    op.drop_table('guide_purchases')
    op.drop_table('guides')
    op.drop_table('creator_profiles')
    op.drop_table('users')
