import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SHARED = ROOT / 'packages' / 'shared_py'
WORKER = ROOT / 'services' / 'worker'
API = ROOT / 'services' / 'api'

for path in (SHARED, WORKER, API):
    value = str(path)
    if value not in sys.path:
        sys.path.insert(0, value)

TEST_DB = Path(tempfile.mkdtemp(prefix='vocalizz-tests-')) / 'vocalizz.db'
os.environ['DATABASE_URL'] = f'sqlite:///{TEST_DB}'
os.environ['APP_ENV'] = 'development'
os.environ['ENABLE_METRICS'] = 'false'
os.environ['AUTO_INIT_DB'] = 'false'
os.environ['JWT_SECRET'] = 'test-jwt-secret'
os.environ['ADMIN_API_TOKEN'] = 'test-admin-token'
os.environ['PROVIDER_WEBHOOK_SECRET'] = ''
os.environ['STRIPE_WEBHOOK_SECRET'] = ''
os.environ['SIGNUP_CREDITS'] = '5'
for name in ('OSS_ACCESS_KEY_ID', 'OSS_ACCESS_KEY_SECRET', 'OSS_BUCKET', 'OSS_ENDPOINT'):
    os.environ[name] = ''

from vocalizz_shared.config import PricingPolicy  # noqa: E402
from vocalizz_shared.db import SessionLocal, drop_db, init_db  # noqa: E402
from vocalizz_shared.errors import ProviderError, StorageError  # noqa: E402
from vocalizz_shared.guard import JobRequest, reserve  # noqa: E402
from vocalizz_shared.job_states import JobKind  # noqa: E402
from vocalizz_shared.ledger import open_account, set_tier  # noqa: E402
from vocalizz_shared.models import User  # noqa: E402
from vocalizz_shared.provider import SpeechResult  # noqa: E402
from vocalizz_shared.storage import source_prefix  # noqa: E402


class FakeStorage:
    enabled = True

    def __init__(self, files=None, *, fail_delete=False, fail_list=False):
        self.files = dict(files or {})
        self.deleted = []
        self.fail_delete = fail_delete
        self.fail_list = fail_list

    def upload(self, path, data, content_type='application/octet-stream'):
        self.files[path] = data
        return path

    def download(self, path):
        if path not in self.files:
            raise StorageError(f'download failed for {path}: not found')
        return self.files[path]

    def list(self, prefix):
        if self.fail_list:
            raise StorageError(f'list failed for {prefix}')
        return [key[len(prefix):] for key in self.files if key.startswith(prefix) and key != prefix]

    def delete(self, paths):
        if self.fail_delete:
            raise StorageError(f'delete failed for {len(paths)} objects')
        for path in paths:
            self.files.pop(path, None)
            self.deleted.append(path)

    def signed_url(self, path, ttl=None):
        return f'https://storage.test/{path}?signature=fake'


class FakeTrainingProvider:
    name = 'replicate'

    def __init__(self, *, error=None, handle='pred_123'):
        self.error = error
        self.handle = handle
        self.submitted = []
        self.cancelled = []

    def create_training_job(self, params, callback_url):
        self.submitted.append((params, callback_url))
        if self.error is not None:
            raise self.error
        return self.handle

    def cancel_job(self, handle):
        self.cancelled.append(handle)


class FakeSpeechProvider:
    name = 'elevenlabs'
    model_id = 'eleven_test_v1'

    def __init__(self, *, error=None):
        self.error = error
        self.calls = []

    def text_to_speech(self, voice_id, text):
        self.calls.append(('tts', voice_id, text))
        if self.error is not None:
            raise self.error
        return SpeechResult(audio=b'ID3-tts-audio', request_id=f'req_{len(self.calls)}')

    def speech_to_speech(self, voice_id, audio):
        self.calls.append(('sts', voice_id, audio))
        if self.error is not None:
            raise self.error
        return SpeechResult(audio=b'ID3-sts-audio', request_id=f'req_{len(self.calls)}')


def provider_down() -> ProviderError:
    return ProviderError(status_code=503, code='provider_unreachable', message='replicate request failed: connection refused')


@pytest.fixture()
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db()


@pytest.fixture()
def make_account(db):
    counter = {'n': 0}

    def _make(*, credits=5, tier='basic'):
        counter['n'] += 1
        user = User(email=f'user{counter["n"]}@example.com', password_hash='x')
        db.add(user)
        db.flush()
        account = open_account(db, user.id, signup_credits=credits)
        if tier != 'basic':
            account = set_tier(db, user.id, tier)
        db.commit()
        return account

    return _make


@pytest.fixture()
def storage():
    return FakeStorage()


@pytest.fixture()
def training_provider():
    return FakeTrainingProvider()


@pytest.fixture()
def speech_provider():
    return FakeSpeechProvider()


def uploaded_sources(account, name='my voice') -> dict:
    prefix = source_prefix(account.user_id, name)
    return {f'{prefix}take1.wav': b'RIFF1', f'{prefix}take2.wav': b'RIFF2', f'{prefix}.emptyFolderPlaceholder': b''}


@pytest.fixture()
def reserve_training(db):
    def _reserve(account, *, cost=3, quality_tier='standard', name='my voice'):
        job = reserve(
            db,
            account.user_id,
            JobRequest(
                kind=JobKind.TRAINING,
                cost=cost,
                quality_tier=quality_tier,
                name=name,
                source_artifact_path=source_prefix(account.user_id, name),
            ),
            policy=PricingPolicy(),
        )
        db.commit()
        return job

    return _reserve
