"""Conversion and synthesis jobs.

These run inline against the speech provider but are metered exactly like
training: the guard reserves first, then the job is either completed or
compensated before the request returns.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from .compensation import compensate, mark_completed, purge_job_artifacts
from .errors import JobNotFound, JobNotSubmittable, ProviderError, StorageError, VoiceModelUnavailable
from .job_states import JobKind, JobStatus
from .models import Job, SynthesisCache
from .storage import output_path

logger = logging.getLogger(__name__)


@dataclass
class SpeechOutcome:
    job: Job | None
    completed: bool
    url: str = ''
    cached: bool = False
    error: str = ''


def synthesis_cache_key(text: str, voice_id: str, model_id: str) -> str:
    return hashlib.sha256(f'{text}|{voice_id}|{model_id}'.encode('utf-8')).hexdigest()


def resolve_voice_id(db: Session, *, owner_id: str, voice_model_id: str | None) -> str:
    """Provider voice id of a finished training job owned by ``owner_id``."""
    model = db.get(Job, voice_model_id, populate_existing=True) if voice_model_id else None
    if model is None or model.owner_id != owner_id or model.kind != JobKind.TRAINING.value:
        raise VoiceModelUnavailable('voice model not found')
    if model.status != JobStatus.COMPLETED.value:
        raise VoiceModelUnavailable(f'voice model is {model.status}, not trained')
    voice_id = str((model.output_refs or {}).get('voice_id') or model.external_handle or '').strip()
    if not voice_id:
        raise VoiceModelUnavailable('voice model has no provider voice id')
    return voice_id


def cached_synthesis(db: Session, *, owner_id: str, text: str, voice_model_id: str, model_id: str, storage) -> str | None:
    try:
        voice_id = resolve_voice_id(db, owner_id=owner_id, voice_model_id=voice_model_id)
    except VoiceModelUnavailable:
        return None
    row = db.get(SynthesisCache, synthesis_cache_key(text, voice_id, model_id))
    if row is None or row.user_id != owner_id:
        return None
    return storage.signed_url(row.storage_path)


def run_speech_job(db: Session, job_id: str, *, speech_provider, storage) -> SpeechOutcome:
    """Execute a reserved conversion/synthesis job. The caller commits either way."""
    job = db.get(Job, job_id, populate_existing=True)
    if job is None:
        raise JobNotFound(f'job {job_id} not found')
    if job.kind == JobKind.TRAINING.value or job.status != JobStatus.QUEUED.value:
        raise JobNotSubmittable(f'job {job_id} cannot run inline')

    try:
        voice_id = resolve_voice_id(db, owner_id=job.owner_id, voice_model_id=job.voice_model_id)
        if job.kind == JobKind.SYNTHESIS.value:
            result = speech_provider.text_to_speech(voice_id, job.input_text)
        else:
            result = speech_provider.speech_to_speech(voice_id, storage.download(job.source_artifact_path))
        target = output_path(job.owner_id, job.kind, job.id)
        stored = storage.upload(target, result.audio, content_type='audio/mpeg')
    except (VoiceModelUnavailable, ProviderError, StorageError) as exc:
        reason = exc.message
    else:
        reason = ''

    if reason:
        logger.warning('speech job failed job_id=%s kind=%s reason=%s', job_id, job.kind, reason)
        compensate(db, job_id, reason, refund=True, storage=storage)
        return SpeechOutcome(job=db.get(Job, job_id, populate_existing=True), completed=False, error=reason)

    handle = result.request_id or f'{speech_provider.name}:{uuid.uuid4().hex}'
    refs = {'audio_path': stored or target, 'voice_id': voice_id}
    if not mark_completed(db, job_id, output_refs=refs, external_handle=handle):
        # Cancelled while the provider was working; the output is orphaned.
        try:
            storage.delete([target])
        except StorageError:
            logger.warning('orphan output not deleted job_id=%s path=%s', job_id, target, exc_info=True)
        return SpeechOutcome(job=db.get(Job, job_id, populate_existing=True), completed=False, error='job cancelled during processing')

    job = db.get(Job, job_id, populate_existing=True)
    cache_key = synthesis_cache_key(job.input_text, voice_id, speech_provider.model_id)
    if job.kind == JobKind.SYNTHESIS.value and db.get(SynthesisCache, cache_key) is None:
        db.add(SynthesisCache(hash=cache_key, user_id=job.owner_id, storage_path=target))
        db.flush()
    purge_job_artifacts(db, job, storage)
    logger.info('speech job completed job_id=%s kind=%s external_handle=%s', job_id, job.kind, handle)
    return SpeechOutcome(job=job, completed=True, url=storage.signed_url(target))
