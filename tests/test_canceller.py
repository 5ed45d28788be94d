import datetime as dt

import pytest

from conftest import FakeStorage, FakeTrainingProvider, provider_down, uploaded_sources
from vocalizz_shared.canceller import CancelReason, cancel, delete_job
from vocalizz_shared.errors import JobNotCancellable, JobNotFound, NotJobOwner
from vocalizz_shared.ledger import get_account
from vocalizz_shared.models import Job, utcnow
from vocalizz_shared.reconciler import on_provider_notification
from vocalizz_shared.submitter import submit


@pytest.fixture()
def stuck_job(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=3)
    storage = FakeStorage(uploaded_sources(account))
    submit(db, job.id, provider=FakeTrainingProvider(handle='pred_stuck'), storage=storage, callback='http://cb')
    row = db.get(Job, job.id, populate_existing=True)
    row.created_at = utcnow() - dt.timedelta(minutes=45)
    db.commit()
    return account, row, storage


def test_owner_cancels_stuck_job(db, stuck_job):
    account, job, storage = stuck_job
    provider = FakeTrainingProvider()

    cancelled = cancel(db, job.id, requested_by=account.user_id, storage=storage, provider=provider)
    db.commit()

    assert cancelled.status == 'failed'
    assert cancelled.error_detail == 'cancelled by user'
    fresh = get_account(db, account.user_id, fresh=True)
    assert fresh.credit_balance == 5
    assert fresh.active_job_count == 0
    assert provider.cancelled == ['pred_stuck']


def test_timeout_cancel_requires_job_past_its_limit(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=1)

    with pytest.raises(JobNotCancellable):
        cancel(db, job.id, requested_by=account.user_id, reason=CancelReason.TIMEOUT)
    assert db.get(Job, job.id, populate_existing=True).status == 'queued'


def test_timeout_cancel_records_timeout_reason(db, stuck_job):
    account, job, storage = stuck_job

    cancelled = cancel(db, job.id, requested_by=account.user_id, reason='timeout', storage=storage)

    assert cancelled.error_detail == 'exceeded maximum allowed duration for this quality tier'


def test_system_actor_may_only_cancel_on_timeout(db, stuck_job):
    _, job, storage = stuck_job

    with pytest.raises(NotJobOwner):
        cancel(db, job.id, requested_by=None, reason=CancelReason.MANUAL, is_system=True)

    cancelled = cancel(db, job.id, requested_by=None, reason=CancelReason.TIMEOUT, is_system=True, storage=storage)
    assert cancelled.status == 'failed'


def test_other_account_cannot_cancel(db, stuck_job, make_account):
    _, job, _ = stuck_job
    intruder = make_account(credits=0)

    with pytest.raises(NotJobOwner):
        cancel(db, job.id, requested_by=intruder.user_id)
    assert db.get(Job, job.id, populate_existing=True).status == 'processing'


def test_unknown_job_cannot_be_cancelled(db, make_account):
    account = make_account(credits=0)

    with pytest.raises(JobNotFound):
        cancel(db, 'missing-job', requested_by=account.user_id)


def test_terminal_job_is_not_cancellable(db, stuck_job):
    account, job, storage = stuck_job
    on_provider_notification(db, 'pred_stuck', 'succeeded', storage=storage)
    db.commit()

    with pytest.raises(JobNotCancellable):
        cancel(db, job.id, requested_by=account.user_id)
    row = db.get(Job, job.id, populate_existing=True)
    assert row.status == 'completed'
    assert row.error_detail is None
    assert get_account(db, account.user_id, fresh=True).credit_balance == 2


class _FailingCancelProvider(FakeTrainingProvider):
    def cancel_job(self, handle):
        raise provider_down()


def test_provider_cancel_error_is_swallowed(db, stuck_job):
    account, job, storage = stuck_job

    cancelled = cancel(db, job.id, requested_by=account.user_id, storage=storage, provider=_FailingCancelProvider())

    assert cancelled.status == 'failed'
    assert get_account(db, account.user_id, fresh=True).credit_balance == 5


def test_deleting_active_job_refunds_and_later_webhook_is_acknowledged(db, stuck_job):
    account, job, storage = stuck_job

    delete_job(db, job.id, requested_by=account.user_id, storage=storage)
    db.commit()

    assert db.get(Job, job.id) is None
    fresh = get_account(db, account.user_id, fresh=True)
    assert fresh.credit_balance == 5
    assert fresh.active_job_count == 0
    result = on_provider_notification(db, 'pred_stuck', 'succeeded', storage=storage)
    assert result.message == 'job not found, likely deleted'
    assert get_account(db, account.user_id, fresh=True).active_job_count == 0


def test_deleting_completed_job_removes_output(db, stuck_job):
    account, job, storage = stuck_job
    storage.files['out/result.mp3'] = b'ID3'
    on_provider_notification(db, 'pred_stuck', 'succeeded', {'audio_path': 'out/result.mp3'}, storage=storage)
    db.commit()

    delete_job(db, job.id, requested_by=account.user_id, storage=storage)
    db.commit()

    assert 'out/result.mp3' in storage.deleted
    assert get_account(db, account.user_id, fresh=True).credit_balance == 2


def test_deleted_model_frees_its_name(db, stuck_job, reserve_training):
    account, job, storage = stuck_job

    delete_job(db, job.id, requested_by=account.user_id, storage=storage)
    db.commit()
    again = reserve_training(account, cost=1)

    assert again.name == job.name
    assert again.source_artifact_path == job.source_artifact_path
