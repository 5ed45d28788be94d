from __future__ import annotations

from typing import Any

from vocalizz_shared.errors import VocalizzError


def ok(*, request_id: str, data: Any, message: str = 'ok') -> dict:
    return {
        'requestId': request_id,
        'code': 'ok',
        'message': message,
        'data': data,
    }


def fail(*, request_id: str, code: str, message: str, data: Any = None) -> dict:
    return {
        'requestId': request_id,
        'code': code,
        'message': message,
        'data': data,
    }


def fail_from_error(*, request_id: str, exc: VocalizzError) -> dict:
    """Envelope for a domain error; guard rejections carry their numbers in ``data``."""
    return fail(request_id=request_id, code=exc.code, message=exc.message, data=exc.data or None)
