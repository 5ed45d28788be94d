"""Account balance and concurrency counter mutations.

Every write here is a single conditional UPDATE so that two instances acting on
the same account can never both pass a check against a stale read.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from .errors import AccountNotFound, InsufficientCredits
from .models import Account, CreditLedger, utcnow
from .pricing import Tier, max_concurrent_jobs

logger = logging.getLogger(__name__)


def get_account(db: Session, user_id: str, *, fresh: bool = False) -> Account:
    account = db.get(Account, user_id, populate_existing=fresh)
    if account is None:
        raise AccountNotFound(f'no account for user {user_id}')
    return account


def open_account(db: Session, user_id: str, *, signup_credits: int = 0) -> Account:
    account = Account(user_id=user_id, tier=Tier.BASIC.value, credit_balance=0, active_job_count=0)
    db.add(account)
    db.flush()
    if signup_credits > 0:
        apply_credit_delta(
            db,
            user_id=user_id,
            delta_credits=signup_credits,
            entry_type='signup',
            idempotency_key=f'signup:{user_id}',
            description='signup_bonus',
        )
    return get_account(db, user_id, fresh=True)


def find_entry(db: Session, idempotency_key: str) -> CreditLedger | None:
    return db.query(CreditLedger).filter(CreditLedger.idempotency_key == idempotency_key).first()


def record_entry(
    db: Session,
    *,
    user_id: str,
    entry_type: str,
    delta_credits: int,
    balance_after: int,
    idempotency_key: str,
    description: str = '',
    metadata_json: dict[str, Any] | None = None,
) -> CreditLedger:
    row = CreditLedger(
        user_id=user_id,
        entry_type=entry_type,
        delta_credits=int(delta_credits),
        balance_after=int(balance_after),
        idempotency_key=idempotency_key,
        description=description,
        metadata_json=metadata_json or {},
    )
    db.add(row)
    db.flush()
    return row


def apply_credit_delta(
    db: Session,
    *,
    user_id: str,
    delta_credits: int,
    entry_type: str,
    idempotency_key: str,
    description: str = '',
    metadata_json: dict[str, Any] | None = None,
) -> CreditLedger:
    existing = find_entry(db, idempotency_key)
    if existing is not None:
        return existing

    delta = int(delta_credits)
    stmt = update(Account).where(Account.user_id == user_id)
    if delta < 0:
        stmt = stmt.where(Account.credit_balance >= -delta)
    stmt = (
        stmt.values(credit_balance=Account.credit_balance + delta, updated_at=utcnow())
        .returning(Account.credit_balance)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        account = get_account(db, user_id, fresh=True)
        raise InsufficientCredits(required=-delta, available=account.credit_balance)

    return record_entry(
        db,
        user_id=user_id,
        entry_type=entry_type,
        delta_credits=delta,
        balance_after=row[0],
        idempotency_key=idempotency_key,
        description=description,
        metadata_json=metadata_json,
    )


def reserve_credits_and_slot(
    db: Session,
    *,
    user_id: str,
    tier: str,
    cost: int,
    slot_limit: int | None,
    pending_tier: str | None = None,
) -> tuple[int, int] | None:
    """Deduct ``cost`` and take one job slot in one statement.

    Returns ``(balance, active_jobs)`` after the update, or ``None`` when a
    guard did not hold (including a tier change since the caller's read).
    """
    stmt = update(Account).where(Account.user_id == user_id, Account.tier == tier)
    if pending_tier is None:
        stmt = stmt.where(Account.pending_tier.is_(None))
    else:
        stmt = stmt.where(Account.pending_tier == pending_tier)
    if slot_limit is not None:
        stmt = stmt.where(Account.active_job_count < slot_limit)
    if cost > 0:
        stmt = stmt.where(Account.credit_balance >= cost)
    stmt = (
        stmt.values(
            credit_balance=Account.credit_balance - cost,
            active_job_count=Account.active_job_count + 1,
            updated_at=utcnow(),
        )
        .returning(Account.credit_balance, Account.active_job_count)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        return None
    return int(row[0]), int(row[1])


def release_job_slot(db: Session, user_id: str) -> int | None:
    stmt = (
        update(Account)
        .where(Account.user_id == user_id, Account.active_job_count > 0)
        .values(active_job_count=Account.active_job_count - 1, updated_at=utcnow())
        .returning(Account.active_job_count, Account.pending_tier)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    if row is None:
        logger.warning('job slot release skipped user_id=%s reason=counter_at_zero', user_id)
        return None
    active, pending = int(row[0]), row[1]
    if pending is not None and active <= max_concurrent_jobs(pending):
        _apply_tier(db, user_id, Tier(pending), expected_pending=pending)
    return active


def _apply_tier(db: Session, user_id: str, tier: Tier, *, expected_pending: str | None = None, fit_required: bool = True) -> bool:
    stmt = update(Account).where(Account.user_id == user_id)
    if fit_required:
        stmt = stmt.where(Account.active_job_count <= max_concurrent_jobs(tier))
    if expected_pending is not None:
        stmt = stmt.where(Account.pending_tier == expected_pending)
    stmt = (
        stmt.values(tier=tier.value, pending_tier=None, updated_at=utcnow())
        .returning(Account.user_id)
        .execution_options(synchronize_session=False)
    )
    applied = db.execute(stmt).first() is not None
    if applied:
        logger.info('tier applied user_id=%s tier=%s', user_id, tier.value)
    return applied


def set_tier(db: Session, user_id: str, tier: str | Tier) -> Account:
    """Change the subscription tier.

    A downgrade whose concurrency limit is below the running job count is
    parked in ``pending_tier`` and applied by ``release_job_slot`` once enough
    jobs have finished; ``active_job_count`` never exceeds the current tier's
    limit.
    """
    target = Tier(tier)
    account = get_account(db, user_id, fresh=True)
    raising = max_concurrent_jobs(target) >= max_concurrent_jobs(account.tier)
    if not _apply_tier(db, user_id, target, fit_required=not raising):
        account = get_account(db, user_id, fresh=True)
        account.pending_tier = target.value
        account.updated_at = utcnow()
        db.flush()
        logger.info(
            'tier change deferred user_id=%s tier=%s pending=%s active=%s',
            user_id,
            account.tier,
            target.value,
            account.active_job_count,
        )
    return get_account(db, user_id, fresh=True)


def list_ledger(db: Session, user_id: str, limit: int = 100) -> list[CreditLedger]:
    return db.query(CreditLedger).filter(CreditLedger.user_id == user_id).order_by(desc(CreditLedger.created_at)).limit(limit).all()
