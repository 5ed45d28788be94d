from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base

JSONType = JSON().with_variant(JSONB, 'postgresql')


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class User(Base):
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Session(Base):
    __tablename__ = 'sessions'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    token_jti: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    revoked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Account(Base):
    """Credit balance and concurrency counter; only mutated through ``ledger``."""

    __tablename__ = 'accounts'
    __table_args__ = (
        CheckConstraint('credit_balance >= 0', name='ck_accounts_credit_balance_non_negative'),
        CheckConstraint('active_job_count >= 0', name='ck_accounts_active_job_count_non_negative'),
    )

    user_id: Mapped[str] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default='basic')
    credit_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active_job_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Downgrade waiting for running jobs to drain below its concurrency limit.
    pending_tier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class CreditLedger(Base):
    __tablename__ = 'credit_ledger'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    entry_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    delta_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    metadata_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Job(Base):
    __tablename__ = 'jobs'
    __table_args__ = (
        CheckConstraint('feedback_rating IN (1, 5)', name='ck_jobs_feedback_rating'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default='queued', index=True)
    cost_in_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_handle: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    quality_tier: Mapped[str] = mapped_column(String(16), nullable=False, default='standard')
    name: Mapped[str] = mapped_column(String(255), nullable=False, default='')
    epochs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cleaning_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_artifact_path: Mapped[str] = mapped_column(Text, nullable=False, default='')
    voice_model_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    input_text: Mapped[str] = mapped_column(Text, nullable=False, default='')
    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    audio_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_refs: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    artifacts_purged_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SynthesisCache(Base):
    __tablename__ = 'synthesis_cache'

    hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


Index('idx_jobs_owner_created', Job.owner_id, Job.created_at.desc())
Index('idx_jobs_status_purged', Job.status, Job.artifacts_purged_at)
# Training jobs of one owner share nothing in storage: cleanup of one must never touch another's sources.
Index(
    'uq_jobs_training_source',
    Job.owner_id,
    Job.source_artifact_path,
    unique=True,
    sqlite_where=text("kind = 'training' AND source_artifact_path != ''"),
    postgresql_where=text("kind = 'training' AND source_artifact_path != ''"),
)
Index('idx_credit_ledger_user_created', CreditLedger.user_id, CreditLedger.created_at.desc())
