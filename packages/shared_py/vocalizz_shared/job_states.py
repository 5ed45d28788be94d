"""Job status state machine.

Every status write in the system goes through ``reduce``; pairs missing from
``TRANSITIONS`` are no-ops, which is what makes webhook redelivery harmless.
"""

from __future__ import annotations

from enum import Enum


class JobKind(str, Enum):
    TRAINING = 'training'
    CONVERSION = 'conversion'
    SYNTHESIS = 'synthesis'


class JobStatus(str, Enum):
    QUEUED = 'queued'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class JobEvent(str, Enum):
    SUBMITTED = 'submitted'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

TRANSITIONS: dict[tuple[JobStatus, JobEvent], JobStatus] = {
    (JobStatus.QUEUED, JobEvent.SUBMITTED): JobStatus.PROCESSING,
    (JobStatus.QUEUED, JobEvent.SUCCEEDED): JobStatus.COMPLETED,
    (JobStatus.PROCESSING, JobEvent.SUCCEEDED): JobStatus.COMPLETED,
    (JobStatus.QUEUED, JobEvent.FAILED): JobStatus.FAILED,
    (JobStatus.PROCESSING, JobEvent.FAILED): JobStatus.FAILED,
    (JobStatus.QUEUED, JobEvent.CANCELLED): JobStatus.FAILED,
    (JobStatus.PROCESSING, JobEvent.CANCELLED): JobStatus.FAILED,
}

_PROVIDER_OUTCOMES = {
    'succeeded': JobEvent.SUCCEEDED,
    'completed': JobEvent.SUCCEEDED,
    'failed': JobEvent.FAILED,
    'error': JobEvent.FAILED,
    'canceled': JobEvent.CANCELLED,
    'cancelled': JobEvent.CANCELLED,
}


def active_status_values() -> list[str]:
    return [status.value for status in ACTIVE_STATUSES]


def is_terminal(status: str | JobStatus) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES


def can_apply(status: str | JobStatus, event: JobEvent) -> bool:
    return (JobStatus(status), event) in TRANSITIONS


def reduce(status: str | JobStatus, event: JobEvent) -> JobStatus:
    current = JobStatus(status)
    return TRANSITIONS.get((current, event), current)


def map_provider_outcome(raw: str | None) -> JobEvent | None:
    """Translate a provider status string; in-flight states map to ``None``."""
    return _PROVIDER_OUTCOMES.get(str(raw or '').strip().lower())
