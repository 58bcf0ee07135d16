"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create gateway schema."""

    # ========================================================================
    # credit_balances - one row per user, created lazily
    # ========================================================================
    op.create_table(
        'credit_balances',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('credits_remaining', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('credits_used_this_month', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('plan_type', sa.String(50), nullable=False, server_default='free'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_credits_remaining_non_negative'),
        sa.CheckConstraint('credits_used_this_month >= 0', name='ck_credits_used_non_negative'),
        sa.UniqueConstraint('user_id', name='uq_credit_balances_user_id'),
    )

    # ========================================================================
    # api_keys - SHA-256 digests only
    # ========================================================================
    op.create_table(
        'api_keys',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('key_name', sa.String(255), nullable=False),
        sa.Column('key_prefix', sa.String(20), nullable=False),
        sa.Column('key_hash', sa.String(64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('key_hash', name='uq_api_keys_key_hash'),
    )
    op.create_index('ix_api_keys_user_id', 'api_keys', ['user_id'])
    op.create_index(
        'idx_api_keys_hash_active',
        'api_keys',
        ['key_hash'],
        postgresql_where=sa.text('is_active = true'),
    )

    # ========================================================================
    # agents
    # ========================================================================
    op.create_table(
        'agents',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('purpose', sa.String(255), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('system_prompt', sa.Text(), nullable=True),
        sa.Column('ai_model', sa.String(255), nullable=True),
        sa.Column('temperature', sa.Float(), nullable=True),
        sa.Column('max_tokens', sa.Integer(), nullable=True),
        sa.Column('knowledge_base', JSONB(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_agents_user_id', 'agents', ['user_id'])
    op.create_index(
        'idx_agents_published',
        'agents',
        ['id'],
        postgresql_where=sa.text('is_published = true'),
    )

    # ========================================================================
    # agent_functions
    # ========================================================================
    op.create_table(
        'agent_functions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('agent_id', UUID(as_uuid=True), sa.ForeignKey('agents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('function_type', sa.String(50), nullable=False),
        sa.Column('trigger_keywords', ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('config', JSONB(), nullable=False, server_default='{}'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('execution_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint(
            "function_type IN ('api_call', 'conditional', 'data_transform', 'webhook')",
            name='ck_agent_functions_type',
        ),
    )
    op.create_index('ix_agent_functions_agent_id', 'agent_functions', ['agent_id'])

    # ========================================================================
    # credit_usage - append-only
    # ========================================================================
    op.create_table(
        'credit_usage',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('agent_id', UUID(as_uuid=True), nullable=True),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('operation_type', sa.String(50), nullable=False),
        sa.Column('metadata', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('credits_used >= 0', name='ck_credit_usage_non_negative'),
    )
    op.create_index('ix_credit_usage_user_id', 'credit_usage', ['user_id'])
    op.create_index('idx_credit_usage_created_at', 'credit_usage', ['created_at'])


def downgrade() -> None:
    """Drop gateway schema."""
    op.drop_table('credit_usage')
    op.drop_table('agent_functions')
    op.drop_table('agents')
    op.drop_table('api_keys')
    op.drop_table('credit_balances')
