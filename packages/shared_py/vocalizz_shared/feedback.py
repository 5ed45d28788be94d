from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from .errors import JobNotFound, JobNotRateable, NotJobOwner
from .job_states import JobKind, JobStatus
from .models import Job, utcnow

logger = logging.getLogger(__name__)

THUMBS_DOWN = 1
THUMBS_UP = 5
FEEDBACK_RATINGS = (THUMBS_DOWN, THUMBS_UP)


def rate_voice_model(db: Session, job_id: str, *, requested_by: str, rating: int) -> Job:
    """Record the owner's thumbs up/down on a trained voice model. A later rating replaces the earlier one."""
    if rating not in FEEDBACK_RATINGS:
        raise ValueError(f'rating must be one of {FEEDBACK_RATINGS}')
    job = db.get(Job, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(f'job {job_id} not found')
    if job.owner_id != requested_by:
        raise NotJobOwner(f'job {job_id} belongs to another account')
    if job.kind != JobKind.TRAINING.value or job.status != JobStatus.COMPLETED.value:
        raise JobNotRateable(f'only completed voice models can be rated, job {job_id} is {job.kind}/{job.status}')

    job.feedback_rating = int(rating)
    job.updated_at = utcnow()
    db.flush()
    logger.info('voice model rated job_id=%s rating=%s', job_id, rating)
    return job
