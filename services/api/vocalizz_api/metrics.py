from __future__ import annotations

import re
import time
from typing import Callable

from fastapi import Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

HTTP_REQUESTS_TOTAL = Counter(
    'vocalizz_http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status_code'],
)
HTTP_REQUEST_DURATION = Histogram(
    'vocalizz_http_request_duration_seconds',
    'HTTP request duration seconds',
    ['method', 'path'],
)
JOB_COMPENSATIONS_TOTAL = Counter(
    'vocalizz_job_compensations_total',
    'Jobs failed and compensated, by path that triggered it',
    ['source'],
)

_JOB_ACTION = re.compile(r'^(/api/v1(?:/admin)?/jobs)/[^/]+(/cancel|/resolve)?$')
_ACCOUNT_ACTION = re.compile(r'^/api/v1/admin/accounts/[^/]+/(credits|tier)$')


def _normalize_path(path: str) -> str:
    if not path:
        return '/'
    if path.rstrip('/') in {'/api/v1/jobs/training', '/api/v1/jobs'}:
        return path.rstrip('/')
    match = _JOB_ACTION.match(path)
    if match:
        return f'{match.group(1)}/{{job_id}}{match.group(2) or ""}'
    match = _ACCOUNT_ACTION.match(path)
    if match:
        return f'/api/v1/admin/accounts/{{user_id}}/{match.group(1)}'
    return path


async def metrics_middleware(request: Request, call_next: Callable):
    start = time.perf_counter()
    path = _normalize_path(request.url.path)
    response = await call_next(request)
    duration = max(0.0, time.perf_counter() - start)
    HTTP_REQUEST_DURATION.labels(method=request.method, path=path).observe(duration)
    HTTP_REQUESTS_TOTAL.labels(method=request.method, path=path, status_code=str(response.status_code)).inc()
    return response


def metrics_response() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
