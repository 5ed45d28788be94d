from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from .compensation import compensate
from .errors import JobNotFound, JobNotSubmittable, ProviderError, StorageError
from .job_states import JobEvent, JobKind, JobStatus, can_apply, reduce
from .models import Job, utcnow
from .provider import TrainingParams

logger = logging.getLogger(__name__)

SOURCE_BUCKET_SCHEME = 's3://audio-files/'


@dataclass
class SubmissionOutcome:
    job: Job
    submitted: bool
    error: str = ''


def callback_url(public_base_url: str) -> str:
    return f"{public_base_url.rstrip('/')}/api/v1/webhooks/provider"


def _fail(db: Session, job_id: str, reason: str, storage) -> SubmissionOutcome:
    compensate(db, job_id, reason, refund=True, storage=storage)
    return SubmissionOutcome(job=db.get(Job, job_id, populate_existing=True), submitted=False, error=reason)


def submit(db: Session, job_id: str, *, provider, storage, callback: str) -> SubmissionOutcome:
    """Send a queued training job to the provider, exactly once.

    There is no automatic retry: a failed call may still have created a remote
    job, so the job is failed and compensated instead. The caller commits.
    """
    job = db.get(Job, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(f'job {job_id} not found')
    if job.kind != JobKind.TRAINING.value or not can_apply(job.status, JobEvent.SUBMITTED):
        raise JobNotSubmittable(f'job {job_id} is {job.status}')

    if storage is not None and getattr(storage, 'enabled', True):
        try:
            names = storage.list(job.source_artifact_path)
        except StorageError as exc:
            return _fail(db, job_id, f'source audio check failed: {exc.message}', storage)
        if not [name for name in names if name and not name.startswith('.')]:
            return _fail(db, job_id, f'no source audio found at {job.source_artifact_path}', storage)

    params = TrainingParams(
        job_id=job.id,
        audio_data_path=f'{SOURCE_BUCKET_SCHEME}{job.source_artifact_path}',
        epochs=job.epochs,
        apply_cleaning=job.cleaning_applied,
    )
    try:
        handle = provider.create_training_job(params, callback)
    except ProviderError as exc:
        logger.warning('provider submission failed job_id=%s code=%s message=%s', job_id, exc.code, exc.message)
        return _fail(db, job_id, exc.message, storage)

    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
        .values(status=reduce(JobStatus.QUEUED, JobEvent.SUBMITTED).value, external_handle=handle, updated_at=utcnow())
        .returning(Job.id)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).first() is None:
        # Cancelled while the provider call was in flight; its webhook will find a terminal job.
        logger.warning('job left queued state during submission job_id=%s external_handle=%s', job_id, handle)
        try:
            provider.cancel_job(handle)
        except ProviderError as exc:
            logger.warning('orphan provider job not cancelled external_handle=%s message=%s', handle, exc.message)
        return SubmissionOutcome(job=db.get(Job, job_id, populate_existing=True), submitted=False, error='job cancelled during submission')

    logger.info('job submitted job_id=%s external_handle=%s', job_id, handle)
    return SubmissionOutcome(job=db.get(Job, job_id, populate_existing=True), submitted=True)
