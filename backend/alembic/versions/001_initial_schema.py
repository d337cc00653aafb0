"""Initial schema - businesses, bookings, payments, subscriptions, events

Revision ID: 001
Revises:
Create Date: 2026-10-19

WHY: Creates every table the API reads and writes. Uniqueness on
payment_transactions.paystack_reference and subscriptions.business_id is
what makes charge processing idempotent.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    op.create_table(
        'businesses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('slug', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='KES'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('platform_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('paystack_subaccount_id', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_businesses_id', 'businesses', ['id'])
    op.create_index('ix_businesses_user_id', 'businesses', ['user_id'])

    op.create_table(
        'services',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_id', 'services', ['id'])
    op.create_index('ix_services_business_id', 'services', ['business_id'])

    for table in ('staff', 'clients'):
        op.create_table(
            table,
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('business_id', sa.String(length=36), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=True),
            sa.Column('phone', sa.String(length=32), nullable=True),
            *([sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true')] if table == 'staff' else []),
            *_timestamps(),
            sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(f'ix_{table}_id', table, ['id'])
        op.create_index(f'ix_{table}_business_id', table, ['business_id'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('service_id', sa.String(length=36), nullable=True),
        sa.Column('client_id', sa.String(length=36), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('booking_time', sa.Time(), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='KES'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending_payment'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('payment_id', sa.String(length=128), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bookings_id', 'bookings', ['id'])
    op.create_index('ix_bookings_business_id', 'bookings', ['business_id'])
    op.create_index('ix_bookings_booking_date', 'bookings', ['booking_date'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('plan_type', sa.String(length=16), nullable=False, server_default='trial'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('payment_interval', sa.String(length=16), nullable=True),
        sa.Column('staff_limit', sa.Integer(), nullable=True),
        sa.Column('bookings_limit', sa.Integer(), nullable=True),
        sa.Column('subscription_balance_due', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('auto_split_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('paystack_subaccount_id', sa.String(length=64), nullable=True),
        sa.Column('split_percentage', sa.Numeric(5, 2), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_business_id', 'subscriptions', ['business_id'], unique=True)

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=True),
        sa.Column('booking_id', sa.String(length=36), nullable=True),
        sa.Column('subscription_id', sa.String(length=36), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('business_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('platform_fee', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='KES'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('paystack_reference', sa.String(length=128), nullable=True),
        sa.Column('transaction_type', sa.String(length=32), nullable=False, server_default='subscription'),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status_check_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_status_check_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'])
    op.create_index('ix_payment_transactions_business_id', 'payment_transactions', ['business_id'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])
    op.create_index(
        'ix_payment_transactions_paystack_reference', 'payment_transactions', ['paystack_reference'], unique=True
    )
    op.create_index(
        'ix_payment_transactions_next_status_check_at', 'payment_transactions', ['next_status_check_at']
    )

    op.create_table(
        'client_business_transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=True),
        sa.Column('client_email', sa.String(length=255), nullable=False),
        sa.Column('client_phone', sa.String(length=32), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('business_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=False),
        sa.Column('paystack_reference', sa.String(length=128), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_client_business_transactions_id', 'client_business_transactions', ['id'])
    op.create_index(
        'ix_client_business_transactions_business_id', 'client_business_transactions', ['business_id']
    )
    op.create_index(
        'ix_client_business_transactions_payment_reference',
        'client_business_transactions',
        ['payment_reference'],
        unique=True,
    )

    op.create_table(
        'security_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('severity', sa.String(length=16), nullable=False, server_default='low'),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_security_events_id', 'security_events', ['id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_created_at', 'security_events', ['created_at'])

    op.create_table(
        'system_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_system_events_id', 'system_events', ['id'])
    op.create_index('ix_system_events_business_id', 'system_events', ['business_id'])


def downgrade() -> None:
    for table in (
        'system_events',
        'security_events',
        'client_business_transactions',
        'payment_transactions',
        'subscriptions',
        'bookings',
        'clients',
        'staff',
        'services',
        'businesses',
    ):
        op.drop_table(table)
