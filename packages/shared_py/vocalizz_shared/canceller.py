from __future__ import annotations

import datetime as dt
import logging
from enum import Enum

from sqlalchemy.orm import Session

from .compensation import compensate, purge_job_artifacts
from .errors import JobNotCancellable, JobNotFound, NotJobOwner, ProviderError, StorageError
from .job_states import is_terminal
from .models import Job
from .progress import is_possibly_stuck

logger = logging.getLogger(__name__)


class CancelReason(str, Enum):
    MANUAL = 'manual'
    TIMEOUT = 'timeout'
    DELETED = 'deleted'


CANCEL_MESSAGES = {
    CancelReason.MANUAL: 'cancelled by user',
    CancelReason.TIMEOUT: 'exceeded maximum allowed duration for this quality tier',
    CancelReason.DELETED: 'deleted by user',
}


def _load_for(db: Session, job_id: str, requested_by: str | None, *, is_system: bool) -> Job:
    job = db.get(Job, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(f'job {job_id} not found')
    if not is_system and job.owner_id != requested_by:
        raise NotJobOwner(f'job {job_id} belongs to another account')
    return job


def cancel(
    db: Session,
    job_id: str,
    *,
    requested_by: str | None,
    reason: CancelReason = CancelReason.MANUAL,
    is_system: bool = False,
    storage=None,
    provider=None,
    now: dt.datetime | None = None,
) -> Job:
    """Force a non-terminal job to ``failed`` and compensate it.

    Owners may cancel for any reason; system actors only for ``timeout``.
    A ``timeout`` cancel is refused until the job is actually past its limit.
    """
    reason = CancelReason(reason)
    if is_system and reason != CancelReason.TIMEOUT:
        raise NotJobOwner('system actors may only cancel on timeout')
    job = _load_for(db, job_id, requested_by, is_system=is_system)
    if is_terminal(job.status):
        raise JobNotCancellable(f'job {job_id} is already {job.status}')
    if reason == CancelReason.TIMEOUT and not is_possibly_stuck(job.status, job.created_at, job.quality_tier, now):
        raise JobNotCancellable(f'job {job_id} has not exceeded its time limit')

    handle = job.external_handle
    if not compensate(db, job_id, CANCEL_MESSAGES[reason], refund=True, storage=storage):
        raise JobNotCancellable(f'job {job_id} finished before it could be cancelled')
    logger.info('job cancelled job_id=%s reason=%s requested_by=%s', job_id, reason.value, requested_by or 'system')

    if provider is not None and handle:
        try:
            provider.cancel_job(handle)
        except ProviderError as exc:
            logger.warning('provider cancel failed job_id=%s external_handle=%s message=%s', job_id, handle, exc.message)
    return db.get(Job, job_id, populate_existing=True)


def delete_job(db: Session, job_id: str, *, requested_by: str, storage=None, provider=None) -> None:
    job = _load_for(db, job_id, requested_by, is_system=False)
    if not is_terminal(job.status):
        job = cancel(db, job_id, requested_by=requested_by, reason=CancelReason.DELETED, storage=storage, provider=provider)

    if not purge_job_artifacts(db, job, storage):
        logger.warning('deleting job with unpurged artifacts job_id=%s path=%s', job_id, job.source_artifact_path)
    output = str((job.output_refs or {}).get('audio_path') or '')
    if output and storage is not None:
        try:
            storage.delete([output])
        except StorageError:
            logger.warning('output delete failed job_id=%s path=%s', job_id, output, exc_info=True)
    db.delete(job)
    db.flush()
    logger.info('job deleted job_id=%s owner_id=%s', job_id, requested_by)
