from __future__ import annotations

import datetime as dt
from collections import Counter as TierCounter

from celery.utils.log import get_task_logger
from prometheus_client import Counter, Gauge
from sqlalchemy.orm import Session

from vocalizz_shared.compensation import purge_job_artifacts as purge_artifacts
from vocalizz_shared.config import get_settings
from vocalizz_shared.db import init_db, session_scope
from vocalizz_shared.errors import StorageError
from vocalizz_shared.job_states import TERMINAL_STATUSES, active_status_values, is_terminal
from vocalizz_shared.models import Job
from vocalizz_shared.progress import is_possibly_stuck
from vocalizz_shared.storage import OssStorage

from .worker_app import worker_app

logger = get_task_logger(__name__)
settings = get_settings()
ARTIFACT_PURGES_TOTAL = Counter('vocalizz_worker_artifact_purges_total', 'Artifact purge task executions', ['status'])
STALE_JOBS = Gauge('vocalizz_worker_stale_jobs', 'Non-terminal jobs past their quality tier timeout', ['quality_tier'])


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def purge_one(db: Session, job_id: str, storage) -> str:
    """Purge a terminal job's sources; returns ``purged``, ``skipped`` or ``failed``."""
    job = db.get(Job, job_id, populate_existing=True)
    if job is None or not is_terminal(job.status) or job.artifacts_purged_at is not None:
        return 'skipped'
    if purge_artifacts(db, job, storage):
        return 'purged'
    return 'failed'


def find_unpurged_job_ids(db: Session, limit: int) -> list[str]:
    rows = (
        db.query(Job.id)
        .filter(Job.status.in_([status.value for status in TERMINAL_STATUSES]), Job.artifacts_purged_at.is_(None))
        .order_by(Job.updated_at.asc())
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def count_stale_jobs(db: Session, now: dt.datetime | None = None) -> dict[str, int]:
    now = now or _now()
    counts: TierCounter = TierCounter()
    rows = db.query(Job).filter(Job.status.in_(active_status_values())).all()
    for job in rows:
        if is_possibly_stuck(job.status, job.created_at, job.quality_tier, now):
            counts[job.quality_tier] += 1
    return dict(counts)


@worker_app.task(
    name='vocalizz_worker.purge_job_artifacts',
    autoretry_for=(StorageError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={'max_retries': 5},
)
def purge_job_artifacts(job_id: str) -> str:
    with session_scope() as db:
        outcome = purge_one(db, job_id, OssStorage(settings))
    ARTIFACT_PURGES_TOTAL.labels(status=outcome).inc()
    if outcome == 'failed':
        raise StorageError(f'artifact purge incomplete for job {job_id}')
    return outcome


@worker_app.task(name='vocalizz_worker.sweep_unpurged_artifacts')
def sweep_unpurged_artifacts() -> dict:
    if settings.auto_init_db:
        init_db()
    with session_scope() as db:
        job_ids = find_unpurged_job_ids(db, settings.artifact_sweep_batch)
    for job_id in job_ids:
        purge_job_artifacts.delay(job_id)
    logger.info('artifact sweep queued count=%s', len(job_ids))
    return {'queued': len(job_ids)}


@worker_app.task(name='vocalizz_worker.report_stale_jobs')
def report_stale_jobs() -> dict:
    with session_scope() as db:
        counts = count_stale_jobs(db)
    for quality_tier in ('standard', 'premium'):
        STALE_JOBS.labels(quality_tier=quality_tier).set(counts.get(quality_tier, 0))
    if counts:
        logger.warning('possibly stuck jobs by quality tier counts=%s', counts)
    return counts
