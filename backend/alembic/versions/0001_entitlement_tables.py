"""Create catalog and entitlement tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '0001_entitlement_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create catalog tables (read-only for the engine) and entitlement aggregates."""

    # Catalog
    op.create_table(
        'clients',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('email', sa.String(255)),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'brands',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('gateway_account_id', sa.String(255)),
        sa.Column('gateway_onboarding_complete', sa.Boolean, server_default='false', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'subscription_plans',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('brand_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('price', sa.Integer, nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('billing_cycle', sa.String(20), server_default='monthly', nullable=False),
        sa.Column('included_class_ids', sa.JSON, server_default='[]', nullable=False),
        sa.Column('frequency_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('frequency_period', sa.String(10), server_default='week', nullable=False),
        sa.Column('frequency_reset_day', sa.Integer, server_default='1', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'credit_plans',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('brand_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('price', sa.Integer, nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('credit_amount', sa.Integer, nullable=False),
        sa.Column('bonus_credits', sa.Integer, server_default='0', nullable=False),
        sa.Column('validity_period_days', sa.Integer, nullable=False),
        sa.Column('included_class_ids', sa.JSON, server_default='[]', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        *_timestamps(),
    )

    # Payments
    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('client_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('brand_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('amount', sa.Integer, nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('external_intent_id', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('payment_method_id', sa.String(255)),
        sa.Column('related_entitlement_id', UUID(as_uuid=False)),
        sa.Column('plan_id', UUID(as_uuid=False)),
        sa.Column('failure_reason', sa.String(500)),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('refunded_amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('refund_reason', sa.String(500)),
        sa.Column('refunded_at', sa.DateTime(timezone=True)),
        sa.Column('payment_metadata', sa.JSON, server_default='{}', nullable=False),
        sa.Column('gateway_events', sa.JSON, server_default='[]', nullable=False),
        sa.Column('version', sa.Integer, server_default='0', nullable=False),
        *_timestamps(),
    )

    # Subscriptions
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('client_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('brand_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('plan_id', UUID(as_uuid=False), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('frequency_used', sa.Integer, server_default='0', nullable=False),
        sa.Column('frequency_reset_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), index=True),
        sa.Column('auto_renew', sa.Boolean, server_default='true', nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancellation_reason', sa.String(500)),
        sa.Column('version', sa.Integer, server_default='0', nullable=False),
        *_timestamps(),
    )

    # At most one pending or active subscription per client and brand
    op.create_index(
        'uq_subscriptions_open_client_brand',
        'subscriptions',
        ['client_id', 'brand_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'active')"),
    )

    # Credit balances
    op.create_table(
        'credit_balances',
        sa.Column('id', UUID(as_uuid=False), primary_key=True),
        sa.Column('client_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('brand_id', UUID(as_uuid=False), nullable=False, index=True),
        sa.Column('available_credits', sa.Integer, server_default='0', nullable=False, index=True),
        sa.Column('total_credits_earned', sa.Integer, server_default='0', nullable=False),
        sa.Column('total_credits_used', sa.Integer, server_default='0', nullable=False),
        sa.Column('credit_packages', sa.JSON, server_default='[]', nullable=False),
        sa.Column('transactions', sa.JSON, server_default='[]', nullable=False),
        sa.Column('last_activity_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer, server_default='0', nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('client_id', 'brand_id', name='uq_credit_balances_client_brand'),
    )


def downgrade() -> None:
    """Drop entitlement and catalog tables."""
    op.drop_table('credit_balances')
    op.drop_index('uq_subscriptions_open_client_brand', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('payments')
    op.drop_table('credit_plans')
    op.drop_table('subscription_plans')
    op.drop_table('brands')
    op.drop_table('clients')
