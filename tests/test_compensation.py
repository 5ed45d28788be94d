from conftest import FakeStorage, uploaded_sources
from vocalizz_shared.compensation import compensate, mark_completed
from vocalizz_shared.ledger import get_account, release_job_slot
from vocalizz_shared.models import CreditLedger, Job


def test_reserve_then_refund_is_net_zero(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=3)

    assert compensate(db, job.id, 'training failed at provider', storage=FakeStorage())
    db.commit()

    fresh = get_account(db, account.user_id, fresh=True)
    assert fresh.credit_balance == 5
    assert fresh.active_job_count == 0
    failed = db.get(Job, job.id, populate_existing=True)
    assert failed.status == 'failed'
    assert failed.error_detail == 'training failed at provider'
    assert failed.completed_at is not None


def test_second_compensation_is_a_no_op(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=3)

    assert compensate(db, job.id, 'first', storage=FakeStorage())
    assert not compensate(db, job.id, 'second', storage=FakeStorage())
    db.commit()

    assert get_account(db, account.user_id, fresh=True).credit_balance == 5
    assert db.query(CreditLedger).filter(CreditLedger.entry_type == 'refund').count() == 1
    assert db.get(Job, job.id, populate_existing=True).error_detail == 'first'


def test_storage_failure_does_not_block_refund(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=3)
    storage = FakeStorage(uploaded_sources(account), fail_delete=True)

    assert compensate(db, job.id, 'provider error', storage=storage)
    db.commit()

    fresh = get_account(db, account.user_id, fresh=True)
    assert fresh.credit_balance == 5
    assert fresh.active_job_count == 0
    assert db.get(Job, job.id, populate_existing=True).artifacts_purged_at is None


def test_compensation_without_refund_only_releases_slot(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=3)

    assert compensate(db, job.id, 'policy violation', refund=False)
    db.commit()

    fresh = get_account(db, account.user_id, fresh=True)
    assert fresh.credit_balance == 2
    assert fresh.active_job_count == 0


def test_completion_releases_slot_without_refund(db, make_account, reserve_training):
    account = make_account(credits=5)
    job = reserve_training(account, cost=3)

    assert mark_completed(db, job.id, output_refs={'output': 'weights.zip'})
    assert not mark_completed(db, job.id)
    db.commit()

    fresh = get_account(db, account.user_id, fresh=True)
    assert fresh.credit_balance == 2
    assert fresh.active_job_count == 0


def test_slot_release_never_goes_negative(db, make_account):
    account = make_account(credits=0)

    assert release_job_slot(db, account.user_id) is None
    assert get_account(db, account.user_id, fresh=True).active_job_count == 0
