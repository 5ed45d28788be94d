from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from vocalizz_shared.db import session_scope
from vocalizz_shared.ledger import get_account, list_ledger
from vocalizz_shared.models import User
from vocalizz_shared.pricing import max_concurrent_jobs

from ..deps import get_current_user
from ..response import ok

router = APIRouter(prefix='/api/v1/account', tags=['account'])


def account_view(account) -> dict:
    return {
        'userId': account.user_id,
        'tier': account.tier,
        'pendingTier': account.pending_tier,
        'creditBalance': int(account.credit_balance),
        'activeJobCount': int(account.active_job_count),
        'maxConcurrentJobs': max_concurrent_jobs(account.tier),
    }


@router.get('')
def get_my_account(request: Request, user: User = Depends(get_current_user)):
    with session_scope() as db:
        return ok(request_id=request.state.request_id, data=account_view(get_account(db, user.id)))


@router.get('/ledger')
def get_my_ledger(request: Request, limit: int = Query(default=100, ge=1, le=500), user: User = Depends(get_current_user)):
    with session_scope() as db:
        rows = list_ledger(db, user.id, limit=limit)
        return ok(
            request_id=request.state.request_id,
            data=[
                {
                    'id': item.id,
                    'entryType': item.entry_type,
                    'deltaCredits': int(item.delta_credits),
                    'balanceAfter': int(item.balance_after),
                    'description': item.description,
                    'createdAt': item.created_at.isoformat(),
                }
                for item in rows
            ],
        )
