"""create_billing_tables

Revision ID: 3f1c9a2e7b10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c9a2e7b10'
down_revision = None
branch_labels = None
depends_on = None

# BIGINT autoincrement only works as INTEGER PRIMARY KEY on SQLite
_BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        'customers',
        sa.Column('id', _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint('email', name='uq_customers_email'),
    )

    # Append-only ledger; reference dedup is checked by the reconciler
    op.create_table(
        'transactions',
        sa.Column('id', _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('reference', sa.Text(), nullable=True),
        sa.Column('paid_on', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('expires_on', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('service', sa.Text(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_transactions_amount_non_negative'),
        sa.CheckConstraint('expires_on > paid_on', name='ck_transactions_window'),
    )
    op.create_index('idx_transactions_email_paid_on', 'transactions', ['email', 'paid_on'])
    op.create_index('idx_transactions_reference', 'transactions', ['reference'])

    op.create_table(
        'active_subscriptions',
        sa.Column('id', _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('paid_on', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('expires_on', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('service', sa.Text(), nullable=False),
        sa.Column('reference', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint('email', name='uq_active_subscriptions_email'),
        sa.CheckConstraint('expires_on > paid_on', name='ck_active_subscriptions_window'),
    )

    op.create_table(
        'webhook_dedup_events',
        sa.Column('id', _BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('provider', sa.Text(), nullable=False),
        sa.Column('dedup_key', sa.Text(), nullable=False),
        sa.Column('first_seen_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='processing'),
        sa.Column('request_hash', sa.Text(), nullable=True),
        sa.UniqueConstraint('provider', 'dedup_key', name='uq_webhook_dedup_events'),
    )
    op.create_index('idx_webhook_dedup_status', 'webhook_dedup_events', ['status'])
    op.create_index('idx_webhook_dedup_first_seen', 'webhook_dedup_events', ['first_seen_at'])


def downgrade() -> None:
    op.drop_index('idx_webhook_dedup_first_seen', table_name='webhook_dedup_events')
    op.drop_index('idx_webhook_dedup_status', table_name='webhook_dedup_events')
    op.drop_table('webhook_dedup_events')
    op.drop_table('active_subscriptions')
    op.drop_index('idx_transactions_reference', table_name='transactions')
    op.drop_index('idx_transactions_email_paid_on', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('customers')
