"""Failure compensation shared by submission, webhook and cancel paths.

The status flip is a guarded UPDATE on a non-terminal status; only the caller
that wins it goes on to release the slot and refund, so redelivery and
concurrent cancels apply these effects once.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from .errors import StorageError
from .job_states import JobStatus, active_status_values
from .ledger import apply_credit_delta, release_job_slot
from .models import Job, utcnow
from .storage import purge_prefix

logger = logging.getLogger(__name__)


def purge_job_artifacts(db: Session, job: Job, storage) -> bool:
    """Delete a job's uploaded sources. Best effort: failures are logged and left for the sweeper."""
    if job.artifacts_purged_at is not None:
        return True
    if storage is None:
        return False
    try:
        purge_prefix(storage, job.source_artifact_path)
    except StorageError:
        logger.warning('artifact purge failed job_id=%s path=%s', job.id, job.source_artifact_path, exc_info=True)
        return False
    except Exception:  # noqa: BLE001
        logger.exception('artifact purge crashed job_id=%s path=%s', job.id, job.source_artifact_path)
        return False
    job.artifacts_purged_at = utcnow()
    db.flush()
    return True


def mark_completed(db: Session, job_id: str, *, output_refs: dict | None = None, external_handle: str | None = None) -> bool:
    values = {'status': JobStatus.COMPLETED.value, 'completed_at': utcnow(), 'updated_at': utcnow(), 'error_detail': None}
    if output_refs is not None:
        values['output_refs'] = output_refs
    if external_handle:
        values['external_handle'] = external_handle
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status.in_(active_status_values()))
        .values(**values)
        .returning(Job.owner_id)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        return False
    release_job_slot(db, row[0])
    return True


def compensate(db: Session, job_id: str, reason: str, *, refund: bool = True, storage=None) -> bool:
    """Fail a job and undo its reservation.

    Returns ``False`` without touching anything when the job is already
    terminal (or missing). Storage cleanup never blocks the money steps.
    """
    now = utcnow()
    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status.in_(active_status_values()))
        .values(status=JobStatus.FAILED.value, error_detail=reason, completed_at=now, updated_at=now)
        .returning(Job.owner_id, Job.cost_in_credits)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        logger.info('compensation skipped job_id=%s reason=not_active', job_id)
        return False

    owner_id, cost = row[0], int(row[1])
    release_job_slot(db, owner_id)
    if refund and cost > 0:
        apply_credit_delta(
            db,
            user_id=owner_id,
            delta_credits=cost,
            entry_type='refund',
            idempotency_key=f'job:{job_id}:refund',
            description='job_refund',
            metadata_json={'jobId': job_id, 'reason': reason[:200]},
        )
    logger.info('job compensated job_id=%s owner_id=%s refunded=%s reason=%s', job_id, owner_id, cost if refund else 0, reason)

    job = db.get(Job, job_id, populate_existing=True)
    if job is not None:
        purge_job_artifacts(db, job, storage)
    return True
