from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, Query, Request

from vocalizz_shared.canceller import CancelReason, cancel, delete_job
from vocalizz_shared.config import PricingPolicy, get_settings
from vocalizz_shared.db import session_scope
from vocalizz_shared.errors import JobNotFound, NotJobOwner, SubmissionFailed
from vocalizz_shared.feedback import rate_voice_model
from vocalizz_shared.guard import JobRequest, reserve
from vocalizz_shared.job_states import JobKind
from vocalizz_shared.models import Job, User
from vocalizz_shared.pricing import job_cost_credits
from vocalizz_shared.progress import is_possibly_stuck, progress_for, timeout_seconds
from vocalizz_shared.storage import source_prefix
from vocalizz_shared.submitter import callback_url, submit

from ..deps import get_current_user, get_pricing_policy, get_storage, get_training_provider
from ..metrics import JOB_COMPENSATIONS_TOTAL
from ..response import ok
from ..schemas import CancelRequest, FeedbackRequest, TrainingJobRequest

router = APIRouter(prefix='/api/v1/jobs', tags=['jobs'])


def job_view(job: Job, now: dt.datetime | None = None) -> dict:
    now = now or dt.datetime.now(dt.timezone.utc)
    return {
        'jobId': job.id,
        'kind': job.kind,
        'name': job.name,
        'status': job.status,
        'qualityTier': job.quality_tier,
        'costInCredits': int(job.cost_in_credits),
        'externalHandle': job.external_handle,
        'errorDetail': job.error_detail,
        'fileCount': int(job.file_count or 0),
        'audioDurationSeconds': job.audio_duration_seconds,
        'feedbackRating': job.feedback_rating,
        'progressPercent': progress_for(job.status, job.created_at, job.quality_tier, now),
        'possiblyStuck': is_possibly_stuck(job.status, job.created_at, job.quality_tier, now),
        'timeoutSeconds': timeout_seconds(job.quality_tier),
        'outputRefs': job.output_refs or {},
        'createdAt': job.created_at.isoformat(),
        'completedAt': job.completed_at.isoformat() if job.completed_at else None,
    }


def load_owned_job(db, job_id: str, user_id: str) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise JobNotFound(f'job {job_id} not found')
    if job.owner_id != user_id:
        raise NotJobOwner(f'job {job_id} belongs to another account')
    return job


@router.post('/training')
def create_training_job(
    payload: TrainingJobRequest,
    request: Request,
    user: User = Depends(get_current_user),
    policy: PricingPolicy = Depends(get_pricing_policy),
    storage=Depends(get_storage),
    provider=Depends(get_training_provider),
):
    job_request = JobRequest(
        kind=JobKind.TRAINING,
        cost=job_cost_credits(JobKind.TRAINING, quality_tier=payload.quality_tier, cleaning=payload.cleaning),
        quality_tier=payload.quality_tier,
        cleaning=payload.cleaning,
        name=payload.name,
        source_artifact_path=source_prefix(user.id, payload.name),
        file_count=payload.file_count,
        audio_duration_seconds=payload.audio_duration_seconds,
    )
    with session_scope() as db:
        job_id = reserve(db, user.id, job_request, policy=policy).id

    # Reservation is committed before the provider is called; submit() commits its own outcome.
    with session_scope() as db:
        outcome = submit(db, job_id, provider=provider, storage=storage, callback=callback_url(get_settings().public_base_url))
        data = job_view(outcome.job)

    if not outcome.submitted:
        JOB_COMPENSATIONS_TOTAL.labels(source='submission').inc()
        raise SubmissionFailed(outcome.error, job=data)
    return ok(request_id=request.state.request_id, data=data, message='submitted')


@router.get('')
def list_jobs(
    request: Request,
    kind: JobKind | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
):
    with session_scope() as db:
        query = db.query(Job).filter(Job.owner_id == user.id)
        if kind is not None:
            query = query.filter(Job.kind == kind.value)
        rows = query.order_by(Job.created_at.desc()).limit(limit).all()
        now = dt.datetime.now(dt.timezone.utc)
        return ok(request_id=request.state.request_id, data=[job_view(row, now) for row in rows])


@router.get('/{job_id}')
def get_job(job_id: str, request: Request, user: User = Depends(get_current_user)):
    with session_scope() as db:
        return ok(request_id=request.state.request_id, data=job_view(load_owned_job(db, job_id, user.id)))


@router.post('/{job_id}/cancel')
def cancel_job(
    job_id: str,
    request: Request,
    payload: CancelRequest | None = None,
    user: User = Depends(get_current_user),
    storage=Depends(get_storage),
    provider=Depends(get_training_provider),
):
    reason = CancelReason(payload.reason if payload is not None else 'manual')
    with session_scope() as db:
        job = cancel(db, job_id, requested_by=user.id, reason=reason, storage=storage, provider=provider)
        JOB_COMPENSATIONS_TOTAL.labels(source=f'cancel_{reason.value}').inc()
        return ok(request_id=request.state.request_id, data=job_view(job), message='cancelled')


@router.delete('/{job_id}')
def remove_job(
    job_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    storage=Depends(get_storage),
    provider=Depends(get_training_provider),
):
    with session_scope() as db:
        delete_job(db, job_id, requested_by=user.id, storage=storage, provider=provider)
    return ok(request_id=request.state.request_id, data={'jobId': job_id, 'deleted': True}, message='deleted')


@router.put('/{job_id}/feedback')
def rate_job(job_id: str, payload: FeedbackRequest, request: Request, user: User = Depends(get_current_user)):
    with session_scope() as db:
        job = rate_voice_model(db, job_id, requested_by=user.id, rating=payload.rating)
        return ok(request_id=request.state.request_id, data=job_view(job), message='rated')
