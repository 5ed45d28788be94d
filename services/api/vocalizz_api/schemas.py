from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field

from vocalizz_shared.pricing import QualityTier, Tier


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)


class TrainingJobRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    quality_tier: QualityTier = QualityTier.STANDARD
    cleaning: bool = False
    file_count: int = Field(default=0, ge=0, le=1000)
    audio_duration_seconds: int | None = Field(default=None, ge=0, le=86400)


class FeedbackRequest(BaseModel):
    rating: Literal[1, 5]


class CancelRequest(BaseModel):
    reason: Literal['manual', 'timeout'] = 'manual'


class SynthesizeRequest(BaseModel):
    voice_model_id: str
    text: str = Field(min_length=1, max_length=20000)


class ConvertRequest(BaseModel):
    voice_model_id: str
    source_path: str = Field(min_length=1, max_length=1024)


class GrantCreditsRequest(BaseModel):
    credits: int = Field(ge=1, le=100000)
    idempotency_key: str = Field(min_length=8, max_length=100)
    description: str = Field(default='admin_grant', max_length=255)


class SetTierRequest(BaseModel):
    tier: Tier


class ResolveJobRequest(BaseModel):
    outcome: Literal['succeeded', 'failed']
    error_detail: str | None = Field(default=None, max_length=2000)


class ProviderWebhookPayload(BaseModel):
    id: str = Field(min_length=1)
    status: str = Field(min_length=1)
    output: Any = None
    error: Any = None
