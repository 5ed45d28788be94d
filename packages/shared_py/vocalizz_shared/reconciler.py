"""Provider completion webhook handling.

Deliveries may repeat or race each other; all effects hang off a status flip
that only one delivery can win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from .compensation import compensate, mark_completed, purge_job_artifacts
from .errors import JobNotFound
from .job_states import JobEvent, JobStatus, map_provider_outcome, reduce
from .models import Job

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASONS = {
    JobEvent.FAILED: 'training failed at provider',
    JobEvent.CANCELLED: 'training cancelled at provider',
}


@dataclass
class NotificationResult:
    acknowledged: bool = True
    applied: bool = False
    job_id: str | None = None
    status: str | None = None
    message: str = ''


def _completed_refs(output: Any) -> dict[str, Any]:
    refs: dict[str, Any] = {}
    if isinstance(output, dict):
        refs.update(output)
    elif output is not None:
        refs['output'] = output
    return refs


def apply_event(db: Session, job: Job, event: JobEvent, *, reason: str = '', output_refs: Any = None, storage=None) -> bool:
    """Drive ``job`` through ``event``; returns whether this call made the transition."""
    target = reduce(job.status, event)
    if target == JobStatus(job.status):
        return False
    if target == JobStatus.FAILED:
        return compensate(db, job.id, reason or DEFAULT_FAILURE_REASONS.get(event, 'failed'), refund=True, storage=storage)
    if target == JobStatus.COMPLETED:
        refs = dict(job.output_refs or {})
        refs.update(_completed_refs(output_refs))
        if not mark_completed(db, job.id, output_refs=refs):
            return False
        fresh = db.get(Job, job.id, populate_existing=True)
        purge_job_artifacts(db, fresh, storage)
        return True
    return False


def on_provider_notification(
    db: Session,
    external_handle: str,
    outcome: str,
    output_refs: Any = None,
    *,
    error: str | None = None,
    storage=None,
) -> NotificationResult:
    event = map_provider_outcome(outcome)
    if event is None or event == JobEvent.SUBMITTED:
        return NotificationResult(message=f'ignored status {outcome}')

    job = db.query(Job).populate_existing().filter(Job.external_handle == external_handle).first()
    if job is None:
        logger.info('provider notification for unknown job external_handle=%s outcome=%s', external_handle, outcome)
        return NotificationResult(message='job not found, likely deleted')

    reason = str(error or '').strip()
    applied = apply_event(db, job, event, reason=reason, output_refs=output_refs, storage=storage)
    fresh = db.get(Job, job.id, populate_existing=True)
    if applied:
        logger.info('provider notification applied job_id=%s external_handle=%s status=%s', job.id, external_handle, fresh.status)
        return NotificationResult(applied=True, job_id=job.id, status=fresh.status, message=f'status updated to {fresh.status}')
    return NotificationResult(job_id=job.id, status=fresh.status, message='already terminal')


def resolve_job(db: Session, job_id: str, outcome: str, *, error_detail: str | None = None, storage=None) -> NotificationResult:
    """Operator-driven reconciliation through the same path as the webhook."""
    event = map_provider_outcome(outcome)
    if event not in (JobEvent.SUCCEEDED, JobEvent.FAILED):
        raise ValueError(f'unsupported outcome {outcome}')
    job = db.get(Job, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(f'job {job_id} not found')
    reason = error_detail or 'marked failed by operator'
    applied = apply_event(db, job, event, reason=reason, storage=storage)
    fresh = db.get(Job, job_id, populate_existing=True)
    return NotificationResult(applied=applied, job_id=job_id, status=fresh.status, message='resolved' if applied else 'already terminal')
