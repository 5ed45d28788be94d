from __future__ import annotations

import logging
import re
import unicodedata

import oss2

from .config import Settings, get_settings
from .errors import StorageError

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = '.emptyFolderPlaceholder'
BATCH_DELETE_LIMIT = 1000


def sanitize_name(name: str | None) -> str:
    """Storage-safe form of a user-supplied name; uploads and cleanup must agree on it."""
    safe = str(name or 'untitled_file')
    normalized = unicodedata.normalize('NFD', safe)
    stripped = ''.join(ch for ch in normalized if not unicodedata.combining(ch))
    replaced = re.sub(r'[^a-zA-Z0-9.]', '_', stripped)
    return re.sub(r'_{2,}', '_', replaced).lower()


def source_prefix(user_id: str, model_name: str) -> str:
    return f'{user_id}/{sanitize_name(model_name)}/'


def output_path(user_id: str, kind: str, job_id: str, suffix: str = '.mp3') -> str:
    return f'{user_id}/{kind}-outputs/{job_id}{suffix}'


class OssStorage:
    """Object storage for source audio and generated outputs.

    Without credentials the adapter is disabled and behaves as an empty bucket,
    matching local development without OSS.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._bucket = self._build_bucket()

    def _build_bucket(self) -> oss2.Bucket | None:
        s = self._settings
        if not (s.oss_access_key_id and s.oss_access_key_secret and s.oss_bucket and s.oss_endpoint):
            return None
        auth = oss2.Auth(s.oss_access_key_id, s.oss_access_key_secret)
        endpoint = s.oss_endpoint
        if not endpoint.startswith('http://') and not endpoint.startswith('https://'):
            endpoint = f'https://{endpoint}'
        return oss2.Bucket(auth, endpoint, s.oss_bucket)

    @property
    def enabled(self) -> bool:
        return self._bucket is not None

    def upload(self, path: str, data: bytes, content_type: str = 'application/octet-stream') -> str:
        if self._bucket is None:
            return ''
        try:
            self._bucket.put_object(path, data, headers={'Content-Type': content_type})
        except oss2.exceptions.OssError as exc:
            raise StorageError(f'upload failed for {path}: {exc}') from exc
        return path

    def download(self, path: str) -> bytes:
        if self._bucket is None:
            raise StorageError('object storage is not configured')
        try:
            return self._bucket.get_object(path).read()
        except oss2.exceptions.OssError as exc:
            raise StorageError(f'download failed for {path}: {exc}') from exc

    def list(self, prefix: str) -> list[str]:
        if self._bucket is None:
            return []
        try:
            return [info.key[len(prefix):] for info in oss2.ObjectIterator(self._bucket, prefix=prefix) if info.key != prefix]
        except oss2.exceptions.OssError as exc:
            raise StorageError(f'list failed for {prefix}: {exc}') from exc

    def delete(self, paths: list[str]) -> None:
        if self._bucket is None or not paths:
            return
        try:
            for start in range(0, len(paths), BATCH_DELETE_LIMIT):
                self._bucket.batch_delete_objects(paths[start:start + BATCH_DELETE_LIMIT])
        except oss2.exceptions.OssError as exc:
            raise StorageError(f'delete failed for {len(paths)} objects: {exc}') from exc

    def signed_url(self, path: str, ttl: int | None = None) -> str:
        if self._bucket is None or not path:
            return ''
        return self._bucket.sign_url('GET', path, int(ttl or self._settings.signed_url_ttl_seconds))


def purge_prefix(storage, prefix: str) -> int:
    """Delete every object under ``prefix``. Returns the number deleted."""
    if not prefix:
        return 0
    if not prefix.endswith('/'):
        storage.delete([prefix])
        return 1
    names = [name for name in storage.list(prefix) if name and name != PLACEHOLDER_NAME]
    if not names:
        return 0
    storage.delete([f'{prefix}{name}' for name in names])
    logger.info('source artifacts deleted prefix=%s count=%s', prefix, len(names))
    return len(names)
