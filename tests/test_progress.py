import datetime as dt

from vocalizz_shared.progress import (
    estimate_progress,
    expected_duration_seconds,
    is_possibly_stuck,
    progress_for,
    timeout_seconds,
)

NOW = dt.datetime(2026, 10, 1, 12, 0, tzinfo=dt.timezone.utc)


def test_duration_and_timeout_tables():
    assert expected_duration_seconds('standard') == 900
    assert expected_duration_seconds('premium') == 3600
    assert expected_duration_seconds('unknown') == 1800
    assert timeout_seconds('standard') == 1800
    assert timeout_seconds('premium') == 7200
    assert timeout_seconds(None) == 3600


def test_progress_is_linear_in_elapsed_time():
    created = NOW - dt.timedelta(minutes=7, seconds=30)
    assert estimate_progress(created, 'standard', NOW) == 50
    assert estimate_progress(created, 'premium', NOW) == 12


def test_progress_never_reaches_100_before_completion():
    created = NOW - dt.timedelta(hours=5)
    assert estimate_progress(created, 'standard', NOW) == 99
    assert progress_for('processing', created, 'standard', NOW) == 99
    assert progress_for('completed', created, 'standard', NOW) == 100
    assert progress_for('failed', created, 'standard', NOW) == 0


def test_future_created_at_clamps_to_zero():
    assert estimate_progress(NOW + dt.timedelta(minutes=5), 'standard', NOW) == 0


def test_naive_timestamps_are_treated_as_utc():
    created = (NOW - dt.timedelta(minutes=15)).replace(tzinfo=None)
    assert estimate_progress(created, 'premium', NOW) == 25


def test_possibly_stuck_only_past_timeout_and_non_terminal():
    created = NOW - dt.timedelta(minutes=31)
    assert is_possibly_stuck('processing', created, 'standard', NOW)
    assert not is_possibly_stuck('processing', created, 'premium', NOW)
    assert not is_possibly_stuck('completed', created, 'standard', NOW)
    assert not is_possibly_stuck('queued', NOW - dt.timedelta(minutes=29), 'standard', NOW)
