"""Credit & quota guard: the only entry point that creates a job.

A job row, its credit deduction and its concurrency slot are written in one
transaction; the caller commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import PricingPolicy
from .errors import AccountBusy, InsufficientCredits, ModelNameTaken, QuotaExceeded, TierRequired
from .job_states import JobKind, JobStatus
from .ledger import get_account, record_entry, reserve_credits_and_slot
from .models import Job
from .pricing import QualityTier, epochs_for_quality, max_concurrent_jobs, required_tier, tier_allows

logger = logging.getLogger(__name__)

MAX_RESERVE_ATTEMPTS = 3


@dataclass
class JobRequest:
    kind: JobKind
    cost: int
    quality_tier: QualityTier = QualityTier.STANDARD
    cleaning: bool = False
    name: str = ''
    source_artifact_path: str = ''
    voice_model_id: str | None = None
    input_text: str = ''
    file_count: int = 0
    audio_duration_seconds: int | None = None


def effective_tier(account) -> str:
    """Tier that gates new work; a deferred downgrade already applies here."""
    return account.pending_tier or account.tier


def _rejection(account, *, cost: int, policy: PricingPolicy) -> Exception | None:
    limit = max_concurrent_jobs(effective_tier(account))
    if policy.enforce_quota and account.active_job_count >= limit:
        return QuotaExceeded(active=account.active_job_count, limit=limit)
    if cost > 0 and account.credit_balance < cost:
        return InsufficientCredits(required=cost, available=account.credit_balance)
    return None


def _source_in_use(db: Session, account_id: str, request: JobRequest) -> bool:
    if JobKind(request.kind) != JobKind.TRAINING or not request.source_artifact_path:
        return False
    return (
        db.query(Job.id)
        .filter(
            Job.owner_id == account_id,
            Job.kind == JobKind.TRAINING.value,
            Job.source_artifact_path == request.source_artifact_path,
        )
        .first()
        is not None
    )


def reserve(db: Session, account_id: str, request: JobRequest, *, policy: PricingPolicy) -> Job:
    """Reserve credits and a job slot, then create the job in ``queued``.

    Raises ``QuotaExceeded``, ``InsufficientCredits``, ``TierRequired`` or
    ``ModelNameTaken``; nothing is written in that case.
    """
    charged = int(request.cost) if policy.enforce_credits else 0
    if charged < 0:
        raise ValueError('cost must be non-negative')

    for _ in range(MAX_RESERVE_ATTEMPTS):
        account = get_account(db, account_id, fresh=True)
        tier = effective_tier(account)
        if not tier_allows(tier, quality_tier=request.quality_tier, cleaning=request.cleaning):
            needed = required_tier(quality_tier=request.quality_tier, cleaning=request.cleaning)
            raise TierRequired(required_tier=needed.value, current_tier=tier)
        # Training sources live under a per-name prefix that is purged when the job ends.
        if _source_in_use(db, account_id, request):
            raise ModelNameTaken(name=request.name)

        rejection = _rejection(account, cost=charged, policy=policy)
        if rejection is not None:
            raise rejection

        slot_limit = max_concurrent_jobs(tier) if policy.enforce_quota else None
        reserved = reserve_credits_and_slot(
            db,
            user_id=account_id,
            tier=account.tier,
            pending_tier=account.pending_tier,
            cost=charged,
            slot_limit=slot_limit,
        )
        if reserved is not None:
            break

        # Lost a race: re-read and report against the current row.
        rejection = _rejection(get_account(db, account_id, fresh=True), cost=charged, policy=policy)
        if rejection is not None:
            raise rejection
    else:
        raise AccountBusy(f'account {account_id} changed during reservation, retry')

    balance_after, active_after = reserved
    is_training = JobKind(request.kind) == JobKind.TRAINING
    job = Job(
        owner_id=account_id,
        kind=JobKind(request.kind).value,
        status=JobStatus.QUEUED.value,
        cost_in_credits=charged,
        quality_tier=QualityTier(request.quality_tier).value,
        name=request.name,
        epochs=epochs_for_quality(request.quality_tier) if is_training else 0,
        cleaning_applied=bool(request.cleaning),
        source_artifact_path=request.source_artifact_path,
        voice_model_id=request.voice_model_id,
        input_text=request.input_text,
        file_count=int(request.file_count or 0),
        audio_duration_seconds=request.audio_duration_seconds,
    )
    db.add(job)
    try:
        db.flush()
    except IntegrityError as exc:
        # A concurrent request created the same model first; the caller's rollback undoes the reservation.
        if is_training:
            raise ModelNameTaken(name=request.name) from exc
        raise

    if charged > 0:
        record_entry(
            db,
            user_id=account_id,
            entry_type='reserve',
            delta_credits=-charged,
            balance_after=balance_after,
            idempotency_key=f'job:{job.id}:reserve',
            description=f'{job.kind}_reserve',
            metadata_json={'jobId': job.id, 'kind': job.kind, 'qualityTier': job.quality_tier},
        )

    logger.info(
        'job reserved job_id=%s owner_id=%s kind=%s cost=%s balance=%s active=%s',
        job.id,
        account_id,
        job.kind,
        charged,
        balance_after,
        active_after,
    )
    return job
