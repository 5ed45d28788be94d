import pytest

from vocalizz_shared.errors import AccountNotFound
from vocalizz_shared.ledger import get_account, release_job_slot, set_tier
from vocalizz_shared.pricing import max_concurrent_jobs


def _assert_within_limit(db, user_id):
    account = get_account(db, user_id, fresh=True)
    assert 0 <= account.active_job_count <= max_concurrent_jobs(account.tier)
    return account


def test_downgrade_with_idle_account_applies_at_once(db, make_account):
    account = make_account(tier='premium')

    updated = set_tier(db, account.user_id, 'basic')

    assert updated.tier == 'basic'
    assert updated.pending_tier is None


def test_downgrade_waits_for_running_jobs(db, make_account, reserve_training):
    account = make_account(credits=10, tier='premium')
    for name in ('a', 'b', 'c'):
        reserve_training(account, cost=1, name=name)

    set_tier(db, account.user_id, 'standard')
    db.commit()
    assert _assert_within_limit(db, account.user_id).pending_tier == 'standard'

    assert release_job_slot(db, account.user_id) == 2
    assert _assert_within_limit(db, account.user_id).tier == 'premium'

    assert release_job_slot(db, account.user_id) == 1
    fresh = _assert_within_limit(db, account.user_id)
    assert fresh.tier == 'standard'
    assert fresh.pending_tier is None


def test_upgrade_clears_a_pending_downgrade(db, make_account, reserve_training):
    account = make_account(credits=10, tier='premium')
    reserve_training(account, cost=1, name='a')
    reserve_training(account, cost=1, name='b')
    set_tier(db, account.user_id, 'basic')

    updated = set_tier(db, account.user_id, 'premium')

    assert updated.tier == 'premium'
    assert updated.pending_tier is None
    assert updated.active_job_count == 2


def test_set_tier_for_unknown_account(db):
    with pytest.raises(AccountNotFound):
        set_tier(db, 'missing-user', 'basic')
