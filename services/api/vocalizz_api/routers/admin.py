from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from vocalizz_shared.canceller import CancelReason, cancel
from vocalizz_shared.db import session_scope
from vocalizz_shared.ledger import apply_credit_delta, get_account, set_tier
from vocalizz_shared.reconciler import resolve_job

from ..deps import get_storage, get_training_provider, require_admin
from ..metrics import JOB_COMPENSATIONS_TOTAL
from ..response import ok
from ..schemas import GrantCreditsRequest, ResolveJobRequest, SetTierRequest
from .account import account_view
from .jobs import job_view

router = APIRouter(prefix='/api/v1/admin', tags=['admin'], dependencies=[Depends(require_admin)])


@router.post('/accounts/{user_id}/credits')
def grant_credits(user_id: str, payload: GrantCreditsRequest, request: Request):
    with session_scope() as db:
        get_account(db, user_id)
        entry = apply_credit_delta(
            db,
            user_id=user_id,
            delta_credits=payload.credits,
            entry_type='grant',
            idempotency_key=f'grant:{payload.idempotency_key}',
            description=payload.description,
            metadata_json={'grantedBy': 'admin'},
        )
        if entry.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='idempotency_key_reused')
        return ok(
            request_id=request.state.request_id,
            data={'ledgerId': entry.id, 'account': account_view(get_account(db, user_id, fresh=True))},
            message='granted',
        )


@router.put('/accounts/{user_id}/tier')
def update_tier(user_id: str, payload: SetTierRequest, request: Request):
    with session_scope() as db:
        account = set_tier(db, user_id, payload.tier)
        return ok(request_id=request.state.request_id, data=account_view(account), message='updated')


@router.post('/jobs/{job_id}/cancel')
def cancel_stuck_job(job_id: str, request: Request, storage=Depends(get_storage), provider=Depends(get_training_provider)):
    with session_scope() as db:
        job = cancel(
            db,
            job_id,
            requested_by=None,
            reason=CancelReason.TIMEOUT,
            is_system=True,
            storage=storage,
            provider=provider,
        )
        JOB_COMPENSATIONS_TOTAL.labels(source='cancel_timeout').inc()
        return ok(request_id=request.state.request_id, data=job_view(job), message='cancelled')


@router.post('/jobs/{job_id}/resolve')
def resolve_stuck_job(job_id: str, payload: ResolveJobRequest, request: Request, storage=Depends(get_storage)):
    with session_scope() as db:
        result = resolve_job(db, job_id, payload.outcome, error_detail=payload.error_detail, storage=storage)
        return ok(
            request_id=request.state.request_id,
            data={'jobId': result.job_id, 'status': result.status, 'applied': result.applied},
            message=result.message,
        )
