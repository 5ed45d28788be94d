from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from vocalizz_shared.config import PricingPolicy
from vocalizz_shared.db import session_scope
from vocalizz_shared.errors import SubmissionFailed
from vocalizz_shared.guard import JobRequest, reserve
from vocalizz_shared.job_states import JobKind
from vocalizz_shared.models import User
from vocalizz_shared.pricing import job_cost_credits
from vocalizz_shared.speech import cached_synthesis, resolve_voice_id, run_speech_job

from ..deps import get_current_user, get_pricing_policy, get_speech_provider, get_storage
from ..metrics import JOB_COMPENSATIONS_TOTAL
from ..response import ok
from ..schemas import ConvertRequest, SynthesizeRequest
from .jobs import job_view

router = APIRouter(prefix='/api/v1/speech', tags=['speech'])


def _run(request: Request, job_id: str, *, speech_provider, storage):
    with session_scope() as db:
        outcome = run_speech_job(db, job_id, speech_provider=speech_provider, storage=storage)
        data = job_view(outcome.job)
    if not outcome.completed:
        JOB_COMPENSATIONS_TOTAL.labels(source='speech').inc()
        raise SubmissionFailed(outcome.error, job=data)
    return ok(request_id=request.state.request_id, data={'job': data, 'url': outcome.url, 'cached': False}, message='completed')


@router.post('/synthesize')
def synthesize(
    payload: SynthesizeRequest,
    request: Request,
    user: User = Depends(get_current_user),
    policy: PricingPolicy = Depends(get_pricing_policy),
    storage=Depends(get_storage),
    speech_provider=Depends(get_speech_provider),
):
    with session_scope() as db:
        resolve_voice_id(db, owner_id=user.id, voice_model_id=payload.voice_model_id)
        url = cached_synthesis(
            db,
            owner_id=user.id,
            text=payload.text,
            voice_model_id=payload.voice_model_id,
            model_id=speech_provider.model_id,
            storage=storage,
        )
        if url is not None:
            return ok(request_id=request.state.request_id, data={'job': None, 'url': url, 'cached': True}, message='cached')
        job = reserve(
            db,
            user.id,
            JobRequest(
                kind=JobKind.SYNTHESIS,
                cost=job_cost_credits(JobKind.SYNTHESIS, text=payload.text),
                voice_model_id=payload.voice_model_id,
                input_text=payload.text,
            ),
            policy=policy,
        )
        job_id = job.id
    return _run(request, job_id, speech_provider=speech_provider, storage=storage)


@router.post('/convert')
def convert(
    payload: ConvertRequest,
    request: Request,
    user: User = Depends(get_current_user),
    policy: PricingPolicy = Depends(get_pricing_policy),
    storage=Depends(get_storage),
    speech_provider=Depends(get_speech_provider),
):
    source_path = payload.source_path.strip().lstrip('/')
    if not source_path.startswith(f'{user.id}/') or '..' in source_path.split('/'):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='source_path_forbidden')
    with session_scope() as db:
        resolve_voice_id(db, owner_id=user.id, voice_model_id=payload.voice_model_id)
        job = reserve(
            db,
            user.id,
            JobRequest(
                kind=JobKind.CONVERSION,
                cost=job_cost_credits(JobKind.CONVERSION),
                voice_model_id=payload.voice_model_id,
                source_artifact_path=source_path,
            ),
            policy=policy,
        )
        job_id = job.id
    return _run(request, job_id, speech_provider=speech_provider, storage=storage)
