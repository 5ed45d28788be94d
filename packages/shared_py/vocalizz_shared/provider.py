from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Any, Mapping

import requests

from .config import Settings, get_settings
from .errors import ProviderError

SIGNATURE_TOLERANCE_SECONDS = 5 * 60


@dataclass
class TrainingParams:
    job_id: str
    audio_data_path: str
    epochs: int
    apply_cleaning: bool = False


@dataclass
class SpeechResult:
    audio: bytes
    request_id: str


def _extract_error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get('detail') or payload.get('message') or payload.get('error') or '').strip()
    if isinstance(payload, str):
        return payload.strip()[:300]
    return ''


def _send(method: str, url: str, *, provider: str, timeout: float, **kwargs) -> requests.Response:
    try:
        response = requests.request(method=method, url=url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        raise ProviderError(status_code=502, code=f'{provider}_unreachable', message=f'{provider} request failed: {exc}') from exc

    if response.status_code >= 400:
        content_type = str(response.headers.get('content-type') or '').lower()
        payload: Any = response.text
        if 'application/json' in content_type:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
        message = _extract_error_message(payload) or f'{provider} HTTP {response.status_code}'
        raise ProviderError(status_code=response.status_code, code=f'{provider}_http_error', message=f'{provider} HTTP {response.status_code}: {message}')
    return response


class ReplicateClient:
    """Training provider. Completion arrives later on the configured webhook."""

    name = 'replicate'

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._token = settings.replicate_api_token
        self._base_url = settings.replicate_base_url.rstrip('/')
        self._version = settings.replicate_model_version
        self._timeout_seconds = max(2.0, float(settings.replicate_timeout_seconds))

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise ProviderError(status_code=503, code='replicate_not_configured', message='REPLICATE_API_TOKEN is not set')
        return {'Authorization': f'Token {self._token}', 'Content-Type': 'application/json'}

    def create_training_job(self, params: TrainingParams, callback_url: str) -> str:
        body = {
            'version': self._version,
            'input': {
                'audio_data_path': params.audio_data_path,
                'epochs': int(params.epochs),
                'model_name': params.job_id,
                'apply_cleaning': bool(params.apply_cleaning),
            },
            'webhook': callback_url,
            'webhook_events_filter': ['completed'],
        }
        response = _send('POST', f'{self._base_url}/predictions', provider=self.name, timeout=self._timeout_seconds, json=body, headers=self._headers())
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(status_code=502, code='replicate_invalid_json_response', message=f'replicate returned invalid JSON: {exc}') from exc
        handle = str(payload.get('id') or '').strip() if isinstance(payload, dict) else ''
        if not handle:
            raise ProviderError(status_code=502, code='replicate_missing_id', message='replicate response has no prediction id')
        return handle

    def cancel_job(self, handle: str) -> None:
        _send('POST', f'{self._base_url}/predictions/{handle}/cancel', provider=self.name, timeout=self._timeout_seconds, headers=self._headers())


class ElevenLabsClient:
    name = 'elevenlabs'

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._api_key = settings.elevenlabs_api_key
        self._base_url = settings.elevenlabs_base_url.rstrip('/')
        self.model_id = settings.elevenlabs_model_id
        self._timeout_seconds = max(2.0, float(settings.elevenlabs_timeout_seconds))

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ProviderError(status_code=503, code='elevenlabs_not_configured', message='ELEVENLABS_API_KEY is not set')
        return {'xi-api-key': self._api_key, 'Accept': 'audio/mpeg'}

    @staticmethod
    def _result(response: requests.Response) -> SpeechResult:
        if not response.content:
            raise ProviderError(status_code=502, code='elevenlabs_empty_audio', message='elevenlabs returned no audio')
        request_id = str(response.headers.get('request-id') or '').strip()
        return SpeechResult(audio=response.content, request_id=request_id)

    def text_to_speech(self, voice_id: str, text: str) -> SpeechResult:
        body = {
            'text': text,
            'model_id': self.model_id,
            'voice_settings': {'stability': 0.5, 'similarity_boost': 0.75},
        }
        response = _send(
            'POST',
            f'{self._base_url}/text-to-speech/{voice_id}',
            provider=self.name,
            timeout=self._timeout_seconds,
            json=body,
            headers=self._headers(),
        )
        return self._result(response)

    def speech_to_speech(self, voice_id: str, audio: bytes) -> SpeechResult:
        response = _send(
            'POST',
            f'{self._base_url}/speech-to-speech/{voice_id}',
            provider=self.name,
            timeout=self._timeout_seconds,
            files={'audio': ('source.mp3', audio, 'audio/mpeg')},
            data={'model_id': 'eleven_multilingual_sts_v2'},
            headers=self._headers(),
        )
        return self._result(response)


def verify_provider_signature(secret: str, headers: Mapping[str, str], body: bytes, *, now: float | None = None) -> bool:
    """Check a ``webhook-id``/``webhook-timestamp``/``webhook-signature`` HMAC.

    An empty ``secret`` disables verification.
    """
    if not secret:
        return True
    msg_id = str(headers.get('webhook-id') or '')
    timestamp = str(headers.get('webhook-timestamp') or '')
    signatures = str(headers.get('webhook-signature') or '')
    if not (msg_id and timestamp and signatures):
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs((now or time.time()) - sent_at) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    raw_secret = secret[len('whsec_'):] if secret.startswith('whsec_') else secret
    try:
        key = base64.b64decode(raw_secret)
    except ValueError:
        return False
    signed = f'{msg_id}.{timestamp}.'.encode('utf-8') + body
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode('ascii')
    for candidate in signatures.split():
        _, _, value = candidate.partition(',')
        if value and hmac.compare_digest(value, expected):
            return True
    return False
