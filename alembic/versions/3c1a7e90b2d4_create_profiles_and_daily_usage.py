"""create_profiles_and_daily_usage

Revision ID: 3c1a7e90b2d4
Revises:
Create Date: 2026-10-19 10:14:27.118204

Production-safe migration: Only creates tables that don't exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '3c1a7e90b2d4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    """Create profiles and daily_usage tables if they don't exist."""
    if not table_exists('profiles'):
        op.create_table('profiles',
            sa.Column('id', sa.String(length=64), nullable=False),
            sa.Column('email', sa.String(), nullable=True),
            sa.Column('plan_type', sa.String(), server_default='free', nullable=False),
            sa.Column('stripe_customer_id', sa.String(), nullable=True),
            sa.Column('last_payment_intent_id', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_profiles_email'), 'profiles', ['email'], unique=False)
        op.create_index(op.f('ix_profiles_stripe_customer_id'), 'profiles', ['stripe_customer_id'], unique=False)

    if not table_exists('daily_usage'):
        op.create_table('daily_usage',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('date', sa.Date(), nullable=False),
            sa.Column('questions_asked', sa.Integer(), server_default='0', nullable=False),
            sa.Column('plan_type', sa.String(), server_default='free', nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.CheckConstraint('questions_asked >= 0', name='ck_daily_usage_non_negative'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'date', name='uq_daily_usage_user_date')
        )
        op.create_index(op.f('ix_daily_usage_id'), 'daily_usage', ['id'], unique=False)
        op.create_index(op.f('ix_daily_usage_user_id'), 'daily_usage', ['user_id'], unique=False)
        op.create_index(op.f('ix_daily_usage_date'), 'daily_usage', ['date'], unique=False)


def downgrade() -> None:
    """Drop daily_usage and profiles tables."""
    op.drop_index(op.f('ix_daily_usage_date'), table_name='daily_usage')
    op.drop_index(op.f('ix_daily_usage_user_id'), table_name='daily_usage')
    op.drop_index(op.f('ix_daily_usage_id'), table_name='daily_usage')
    op.drop_table('daily_usage')
    op.drop_index(op.f('ix_profiles_stripe_customer_id'), table_name='profiles')
    op.drop_index(op.f('ix_profiles_email'), table_name='profiles')
    op.drop_table('profiles')
