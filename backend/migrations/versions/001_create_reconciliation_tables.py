"""Create reconciliation tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tables may already exist from Base.metadata.create_all on startup
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'webhook_events' not in existing_tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('provider', sa.String(length=32), nullable=False),
            sa.Column('event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event_id')
        )
        op.create_index('ix_webhook_events_id', 'webhook_events', ['id'])
        op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])

    if 'transactions' not in existing_tables:
        op.create_table(
            'transactions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('buyer_id', sa.String(length=64), nullable=False),
            sa.Column('creator_id', sa.String(length=64), nullable=True),
            sa.Column('session_id', sa.String(length=64), nullable=True),
            sa.Column('challenge_id', sa.String(length=64), nullable=True),
            sa.Column('provider', sa.String(length=32), nullable=False),
            sa.Column('provider_payment_id', sa.String(length=255), nullable=False),
            sa.Column('type', sa.String(length=20), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('amount_gross_cents', sa.Integer(), nullable=False),
            sa.Column('processing_fee_fixed_cents', sa.Integer(), nullable=False),
            sa.Column('processing_fee_percent_cents', sa.Integer(), nullable=False),
            sa.Column('platform_cut_cents', sa.Integer(), nullable=False),
            sa.Column('creator_cut_cents', sa.Integer(), nullable=False),
            sa.Column('amount_after_fees_cents', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('provider', 'provider_payment_id', name='uq_transactions_provider_payment'),
            sa.CheckConstraint(
                "(session_id IS NULL) <> (challenge_id IS NULL)",
                name='ck_transactions_single_target'
            ),
            sa.CheckConstraint(
                "status IN ('pending', 'succeeded', 'failed', 'canceled', 'refunded')",
                name='ck_transactions_status'
            ),
            sa.CheckConstraint(
                "platform_cut_cents + creator_cut_cents = amount_gross_cents",
                name='ck_transactions_cuts_sum'
            ),
            sa.CheckConstraint(
                "amount_after_fees_cents = amount_gross_cents - processing_fee_fixed_cents - processing_fee_percent_cents",
                name='ck_transactions_net'
            )
        )
        op.create_index('ix_transactions_id', 'transactions', ['id'])
        op.create_index('ix_transactions_buyer_id', 'transactions', ['buyer_id'])
        op.create_index('ix_transactions_creator_id', 'transactions', ['creator_id'])
        op.create_index('ix_transactions_buyer_created', 'transactions', ['buyer_id', 'created_at'])

    if 'attendance' not in existing_tables:
        op.create_table(
            'attendance',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('session_id', sa.String(length=64), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('session_id', 'user_id', name='uq_attendance_session_user')
        )
        op.create_index('ix_attendance_id', 'attendance', ['id'])
        op.create_index('ix_attendance_session_id', 'attendance', ['session_id'])
        op.create_index('ix_attendance_user_id', 'attendance', ['user_id'])

    if 'challenge_sessions' not in existing_tables:
        op.create_table(
            'challenge_sessions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('challenge_id', sa.String(length=64), nullable=False),
            sa.Column('session_id', sa.String(length=64), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('challenge_id', 'session_id', name='uq_challenge_sessions_pair')
        )
        op.create_index('ix_challenge_sessions_id', 'challenge_sessions', ['id'])
        op.create_index('ix_challenge_sessions_challenge_id', 'challenge_sessions', ['challenge_id'])

    if 'app_users' not in existing_tables:
        op.create_table(
            'app_users',
            sa.Column('id', sa.String(length=64), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('display_name', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_app_users_email', 'app_users', ['email'], unique=True)


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'app_users' in existing_tables:
        op.drop_index('ix_app_users_email', table_name='app_users')
        op.drop_table('app_users')
    if 'challenge_sessions' in existing_tables:
        op.drop_table('challenge_sessions')
    if 'attendance' in existing_tables:
        op.drop_table('attendance')
    if 'transactions' in existing_tables:
        op.drop_table('transactions')
    if 'webhook_events' in existing_tables:
        op.drop_table('webhook_events')
