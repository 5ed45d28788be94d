import base64
import hashlib
import hmac

import pytest
import requests

from vocalizz_shared import provider as provider_module
from vocalizz_shared.config import Settings
from vocalizz_shared.errors import ProviderError
from vocalizz_shared.provider import ElevenLabsClient, ReplicateClient, TrainingParams, verify_provider_signature


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b'', headers=None):
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = '' if payload is None else str(payload)
        self.headers = headers or {'content-type': 'application/json'}

    def json(self):
        if self._payload is None:
            raise ValueError('no json')
        return self._payload


@pytest.fixture()
def captured(monkeypatch):
    calls = []
    responses = []

    def fake_request(method, url, timeout, **kwargs):
        calls.append({'method': method, 'url': url, **kwargs})
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(provider_module.requests, 'request', fake_request)
    return calls, responses


def _replicate():
    return ReplicateClient(Settings(REPLICATE_API_TOKEN='r8_test', REPLICATE_MODEL_VERSION='v123'))


def test_replicate_training_request_shape(captured):
    calls, responses = captured
    responses.append(FakeResponse(201, {'id': 'pred_1', 'status': 'starting'}))

    handle = _replicate().create_training_job(
        TrainingParams(job_id='job-1', audio_data_path='s3://audio-files/u/v/', epochs=2000, apply_cleaning=True),
        'https://api.test/api/v1/webhooks/provider',
    )

    assert handle == 'pred_1'
    body = calls[0]['json']
    assert calls[0]['url'].endswith('/predictions')
    assert calls[0]['headers']['Authorization'] == 'Token r8_test'
    assert body['version'] == 'v123'
    assert body['input'] == {'audio_data_path': 's3://audio-files/u/v/', 'epochs': 2000, 'model_name': 'job-1', 'apply_cleaning': True}
    assert body['webhook_events_filter'] == ['completed']


def test_replicate_http_error_is_provider_error(captured):
    _, responses = captured
    responses.append(FakeResponse(422, {'detail': 'invalid version'}))

    with pytest.raises(ProviderError) as excinfo:
        _replicate().create_training_job(TrainingParams('job-1', 'p', 500), 'cb')

    assert excinfo.value.status_code == 422
    assert 'invalid version' in excinfo.value.message


def test_replicate_network_error_is_provider_error(captured):
    _, responses = captured
    responses.append(requests.ConnectionError('connection refused'))

    with pytest.raises(ProviderError) as excinfo:
        _replicate().create_training_job(TrainingParams('job-1', 'p', 500), 'cb')

    assert excinfo.value.code == 'replicate_unreachable'


def test_replicate_response_without_id_is_rejected(captured):
    _, responses = captured
    responses.append(FakeResponse(201, {'status': 'starting'}))

    with pytest.raises(ProviderError):
        _replicate().create_training_job(TrainingParams('job-1', 'p', 500), 'cb')


def test_missing_token_fails_without_network(captured):
    calls, _ = captured

    with pytest.raises(ProviderError) as excinfo:
        ReplicateClient(Settings(REPLICATE_API_TOKEN='')).cancel_job('pred_1')

    assert excinfo.value.code == 'replicate_not_configured'
    assert calls == []


def test_elevenlabs_returns_audio_and_request_id(captured):
    calls, responses = captured
    responses.append(FakeResponse(200, content=b'ID3audio', headers={'content-type': 'audio/mpeg', 'request-id': 'req_9'}))
    client = ElevenLabsClient(Settings(ELEVENLABS_API_KEY='xi', ELEVENLABS_MODEL_ID='eleven_v2'))

    result = client.text_to_speech('voice_1', 'hello')

    assert result.audio == b'ID3audio'
    assert result.request_id == 'req_9'
    assert calls[0]['url'].endswith('/text-to-speech/voice_1')
    assert calls[0]['json']['model_id'] == 'eleven_v2'


def _sign(secret: bytes, msg_id: str, timestamp: int, body: bytes) -> str:
    digest = hmac.new(secret, f'{msg_id}.{timestamp}.'.encode() + body, hashlib.sha256).digest()
    return 'v1,' + base64.b64encode(digest).decode()


def test_webhook_signature_verification():
    raw = b'super-secret-key'
    secret = 'whsec_' + base64.b64encode(raw).decode()
    body = b'{"id":"pred_1","status":"succeeded"}'
    headers = {'webhook-id': 'msg_1', 'webhook-timestamp': '1700000000', 'webhook-signature': _sign(raw, 'msg_1', 1700000000, body)}

    assert verify_provider_signature(secret, headers, body, now=1700000010)
    assert not verify_provider_signature(secret, headers, body + b' ', now=1700000010)
    assert not verify_provider_signature(secret, headers, body, now=1700000000 + 3600)
    assert not verify_provider_signature(secret, {}, body, now=1700000010)
    assert verify_provider_signature('', {}, body)
