"""accounts, credit ledger and jobs

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.DateTime(timezone=True), nullable=False) for name in names]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        *_timestamps('created_at', 'updated_at'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'sessions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_jti', sa.String(64), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sessions_user_id', 'sessions', ['user_id'])

    op.create_table(
        'accounts',
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('tier', sa.String(16), nullable=False, server_default='basic'),
        sa.Column('credit_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active_job_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_tier', sa.String(16), nullable=True),
        sa.Column('stripe_customer_id', sa.String(64), nullable=True, unique=True),
        *_timestamps('created_at', 'updated_at'),
        sa.CheckConstraint('credit_balance >= 0', name='ck_accounts_credit_balance_non_negative'),
        sa.CheckConstraint('active_job_count >= 0', name='ck_accounts_active_job_count_non_negative'),
    )

    op.create_table(
        'credit_ledger',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('entry_type', sa.String(16), nullable=False),
        sa.Column('delta_credits', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(128), nullable=False, unique=True),
        sa.Column('description', sa.String(255), nullable=False, server_default=''),
        sa.Column('metadata_json', JSON_TYPE, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_credit_ledger_user_id', 'credit_ledger', ['user_id'])
    op.create_index('ix_credit_ledger_entry_type', 'credit_ledger', ['entry_type'])
    op.create_index('idx_credit_ledger_user_created', 'credit_ledger', ['user_id', sa.text('created_at DESC')])

    op.create_table(
        'jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='queued'),
        sa.Column('cost_in_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_handle', sa.String(128), nullable=True, unique=True),
        sa.Column('quality_tier', sa.String(16), nullable=False, server_default='standard'),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('epochs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cleaning_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source_artifact_path', sa.Text(), nullable=False, server_default=''),
        sa.Column('voice_model_id', sa.String(36), nullable=True),
        sa.Column('input_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('file_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('audio_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('feedback_rating', sa.Integer(), nullable=True),
        sa.Column('output_refs', JSON_TYPE, nullable=False),
        sa.Column('error_detail', sa.Text(), nullable=True),
        sa.Column('artifacts_purged_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('feedback_rating IN (1, 5)', name='ck_jobs_feedback_rating'),
    )
    op.create_index('ix_jobs_owner_id', 'jobs', ['owner_id'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('ix_jobs_voice_model_id', 'jobs', ['voice_model_id'])
    op.create_index('idx_jobs_owner_created', 'jobs', ['owner_id', sa.text('created_at DESC')])
    op.create_index('idx_jobs_status_purged', 'jobs', ['status', 'artifacts_purged_at'])
    op.create_index(
        'uq_jobs_training_source',
        'jobs',
        ['owner_id', 'source_artifact_path'],
        unique=True,
        postgresql_where=sa.text("kind = 'training' AND source_artifact_path != ''"),
    )

    op.create_table(
        'synthesis_cache',
        sa.Column('hash', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('storage_path', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_synthesis_cache_user_id', 'synthesis_cache', ['user_id'])


def downgrade() -> None:
    op.drop_table('synthesis_cache')
    op.drop_table('jobs')
    op.drop_table('credit_ledger')
    op.drop_table('accounts')
    op.drop_table('sessions')
    op.drop_table('users')
