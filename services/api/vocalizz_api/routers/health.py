from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from vocalizz_shared.config import get_settings
from vocalizz_shared.db import engine

from ..response import fail, ok

logger = logging.getLogger(__name__)

router = APIRouter(tags=['health'])


@router.get('/healthz')
def healthz(request: Request):
    settings = get_settings()
    return ok(request_id=request.state.request_id, data={'status': 'ok', 'service': settings.app_name, 'env': settings.app_env})


@router.get('/readyz')
def readyz(request: Request):
    """Ready once the database answers; reservations cannot be made without it."""
    try:
        with engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    except SQLAlchemyError as exc:
        logger.warning('readiness check failed: %s', exc)
        return JSONResponse(
            status_code=503,
            content=fail(request_id=request.state.request_id, code='not_ready', message='database_unavailable'),
        )
    return ok(request_id=request.state.request_id, data={'status': 'ready', 'database': 'ok'})
