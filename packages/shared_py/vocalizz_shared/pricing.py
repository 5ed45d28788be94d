from __future__ import annotations

import math
from enum import Enum

from .job_states import JobKind


class Tier(str, Enum):
    BASIC = 'basic'
    STANDARD = 'standard'
    PREMIUM = 'premium'


class QualityTier(str, Enum):
    STANDARD = 'standard'
    PREMIUM = 'premium'


MAX_CONCURRENT_JOBS = {
    Tier.BASIC: 1,
    Tier.STANDARD: 1,
    Tier.PREMIUM: 3,
}

EPOCHS_BY_QUALITY = {
    QualityTier.STANDARD: 500,
    QualityTier.PREMIUM: 2000,
}

COST_STANDARD_TRAINING = 1
COST_PREMIUM_TRAINING = 5
COST_CLEANING_OPTION = 2
COST_PER_CONVERSION = 1
CHARACTERS_PER_CREDIT = 1000


def max_concurrent_jobs(tier: str | Tier) -> int:
    return MAX_CONCURRENT_JOBS[Tier(tier)]


def epochs_for_quality(quality_tier: str | QualityTier) -> int:
    return EPOCHS_BY_QUALITY[QualityTier(quality_tier)]


def required_tier(*, quality_tier: str | QualityTier, cleaning: bool = False) -> Tier | None:
    """Lowest subscription tier allowed to request these options, ``None`` if any tier may."""
    if QualityTier(quality_tier) == QualityTier.PREMIUM or cleaning:
        return Tier.STANDARD
    return None


def tier_allows(tier: str | Tier, *, quality_tier: str | QualityTier, cleaning: bool = False) -> bool:
    needed = required_tier(quality_tier=quality_tier, cleaning=cleaning)
    return needed is None or Tier(tier) != Tier.BASIC


def training_cost_credits(*, quality_tier: str | QualityTier, cleaning: bool = False) -> int:
    base = COST_PREMIUM_TRAINING if QualityTier(quality_tier) == QualityTier.PREMIUM else COST_STANDARD_TRAINING
    if cleaning:
        base += COST_CLEANING_OPTION
    return base


def synthesis_cost_credits(text: str) -> int:
    length = len(str(text or ''))
    return max(1, int(math.ceil(length / CHARACTERS_PER_CREDIT)))


def job_cost_credits(kind: str | JobKind, *, quality_tier: str | QualityTier = QualityTier.STANDARD, cleaning: bool = False, text: str = '') -> int:
    kind = JobKind(kind)
    if kind == JobKind.TRAINING:
        return training_cost_credits(quality_tier=quality_tier, cleaning=cleaning)
    if kind == JobKind.CONVERSION:
        return COST_PER_CONVERSION
    return synthesis_cost_credits(text)
