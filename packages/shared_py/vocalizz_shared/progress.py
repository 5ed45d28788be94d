"""Client-facing progress estimates.

None of this is provider-reported; it is derived from elapsed time only and
must never drive a state transition.
"""

from __future__ import annotations

import datetime as dt

from .job_states import JobStatus, is_terminal

EXPECTED_DURATION_SECONDS = {
    'standard': 15 * 60,
    'premium': 60 * 60,
}
TIMEOUT_SECONDS = {
    'standard': 30 * 60,
    'premium': 2 * 60 * 60,
}
DEFAULT_EXPECTED_DURATION_SECONDS = 30 * 60
DEFAULT_TIMEOUT_SECONDS = 60 * 60
MAX_ESTIMATED_PROGRESS = 99


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _key(quality_tier: str | None) -> str:
    return str(getattr(quality_tier, 'value', quality_tier) or '').strip().lower()


def expected_duration_seconds(quality_tier: str | None) -> int:
    return EXPECTED_DURATION_SECONDS.get(_key(quality_tier), DEFAULT_EXPECTED_DURATION_SECONDS)


def timeout_seconds(quality_tier: str | None) -> int:
    return TIMEOUT_SECONDS.get(_key(quality_tier), DEFAULT_TIMEOUT_SECONDS)


def elapsed_seconds(created_at: dt.datetime, now: dt.datetime | None = None) -> float:
    now = _as_utc(now or dt.datetime.now(dt.timezone.utc))
    return max(0.0, (now - _as_utc(created_at)).total_seconds())


def estimate_progress(created_at: dt.datetime, quality_tier: str | None, now: dt.datetime | None = None) -> int:
    ratio = elapsed_seconds(created_at, now) / float(expected_duration_seconds(quality_tier))
    return max(0, min(MAX_ESTIMATED_PROGRESS, int(ratio * 100)))


def is_possibly_stuck(status: str | JobStatus, created_at: dt.datetime, quality_tier: str | None, now: dt.datetime | None = None) -> bool:
    if is_terminal(status):
        return False
    return elapsed_seconds(created_at, now) > timeout_seconds(quality_tier)


def progress_for(status: str | JobStatus, created_at: dt.datetime, quality_tier: str | None, now: dt.datetime | None = None) -> int:
    status = JobStatus(status)
    if status == JobStatus.COMPLETED:
        return 100
    if status == JobStatus.FAILED:
        return 0
    return estimate_progress(created_at, quality_tier, now)
