import pytest

from vocalizz_shared.job_states import JobKind
from vocalizz_shared.pricing import (
    QualityTier,
    Tier,
    epochs_for_quality,
    job_cost_credits,
    max_concurrent_jobs,
    required_tier,
    synthesis_cost_credits,
    tier_allows,
    training_cost_credits,
)


def test_training_cost_by_quality_and_cleaning():
    assert training_cost_credits(quality_tier='standard') == 1
    assert training_cost_credits(quality_tier='premium') == 5
    assert training_cost_credits(quality_tier='standard', cleaning=True) == 3
    assert training_cost_credits(quality_tier=QualityTier.PREMIUM, cleaning=True) == 7


@pytest.mark.parametrize(
    ('text', 'expected'),
    [('', 1), ('hi', 1), ('x' * 1000, 1), ('x' * 1001, 2), ('x' * 2500, 3)],
)
def test_synthesis_cost_rounds_up_per_thousand_characters(text, expected):
    assert synthesis_cost_credits(text) == expected


def test_job_cost_dispatches_on_kind():
    assert job_cost_credits(JobKind.CONVERSION) == 1
    assert job_cost_credits('synthesis', text='a' * 3000) == 3
    assert job_cost_credits(JobKind.TRAINING, quality_tier='premium') == 5


def test_concurrency_limits_per_tier():
    assert max_concurrent_jobs('basic') == 1
    assert max_concurrent_jobs(Tier.STANDARD) == 1
    assert max_concurrent_jobs('premium') == 3


def test_epochs_follow_quality_tier():
    assert epochs_for_quality('standard') == 500
    assert epochs_for_quality('premium') == 2000


def test_basic_tier_is_gated_from_premium_quality_and_cleaning():
    assert tier_allows('basic', quality_tier='standard')
    assert not tier_allows('basic', quality_tier='premium')
    assert not tier_allows('basic', quality_tier='standard', cleaning=True)
    assert tier_allows('standard', quality_tier='premium', cleaning=True)
    assert required_tier(quality_tier='premium') == Tier.STANDARD
    assert required_tier(quality_tier='standard') is None
