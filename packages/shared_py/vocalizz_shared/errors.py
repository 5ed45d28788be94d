from __future__ import annotations

from dataclasses import dataclass


class VocalizzError(Exception):
    code = 'vocalizz_error'
    status_code = 400

    def __init__(self, message: str = '', **data) -> None:
        self.message = message or self.code
        self.data = data
        super().__init__(self.message)


class AccountNotFound(VocalizzError):
    code = 'account_not_found'
    status_code = 404


class AccountBusy(VocalizzError):
    code = 'account_busy'
    status_code = 409


class InsufficientCredits(VocalizzError):
    code = 'insufficient_credits'
    status_code = 402

    def __init__(self, *, required: int, available: int) -> None:
        self.required = int(required)
        self.available = int(available)
        self.shortfall = max(0, self.required - self.available)
        super().__init__(
            f'insufficient credits: required {self.required}, available {self.available}',
            required=self.required,
            available=self.available,
            shortfall=self.shortfall,
        )


class QuotaExceeded(VocalizzError):
    code = 'quota_exceeded'
    status_code = 429

    def __init__(self, *, active: int, limit: int) -> None:
        self.active = int(active)
        self.limit = int(limit)
        super().__init__(f'too many concurrent jobs: {self.active}/{self.limit}', active=self.active, limit=self.limit)


class TierRequired(VocalizzError):
    code = 'tier_required'
    status_code = 403

    def __init__(self, *, required_tier: str, current_tier: str) -> None:
        self.required_tier = required_tier
        self.current_tier = current_tier
        super().__init__(
            f'requires {required_tier} subscription or higher',
            required_tier=required_tier,
            current_tier=current_tier,
        )


class JobNotFound(VocalizzError):
    code = 'job_not_found'
    status_code = 404


class NotJobOwner(VocalizzError):
    code = 'job_forbidden'
    status_code = 403


class JobNotCancellable(VocalizzError):
    code = 'job_not_cancellable'
    status_code = 409


class JobNotSubmittable(VocalizzError):
    code = 'job_not_submittable'
    status_code = 409


class ModelNameTaken(VocalizzError):
    code = 'model_name_taken'
    status_code = 409

    def __init__(self, *, name: str) -> None:
        self.name = name
        super().__init__(f'a voice model named {name!r} already exists', name=name)


class JobNotRateable(VocalizzError):
    code = 'job_not_rateable'
    status_code = 409


class VoiceModelUnavailable(VocalizzError):
    code = 'voice_model_unavailable'
    status_code = 409


class SubmissionFailed(VocalizzError):
    code = 'submission_failed'
    status_code = 502


class PaymentEventError(VocalizzError):
    code = 'payment_event_invalid'
    status_code = 400


class StorageError(VocalizzError):
    code = 'storage_error'
    status_code = 502


@dataclass
class ProviderError(Exception):
    status_code: int
    code: str
    message: str

    def __post_init__(self) -> None:
        super().__init__(self.message)
