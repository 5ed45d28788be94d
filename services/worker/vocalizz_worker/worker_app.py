import logging

from celery import Celery
from celery.schedules import crontab
from prometheus_client import start_http_server

from vocalizz_shared.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()
worker_app = Celery('vocalizz_worker', broker=settings.redis_url, backend=settings.redis_url)
worker_app.conf.task_routes = {'vocalizz_worker.purge_job_artifacts': {'queue': 'cleanup'}}
worker_app.conf.beat_schedule = {
    'sweep-unpurged-artifacts-every-30min': {
        'task': 'vocalizz_worker.sweep_unpurged_artifacts',
        'schedule': crontab(minute='*/30'),
    },
    'report-stale-jobs-every-10min': {
        'task': 'vocalizz_worker.report_stale_jobs',
        'schedule': crontab(minute='*/10'),
    },
}

if settings.enable_metrics:
    try:
        start_http_server(settings.worker_metrics_port)
    except OSError:
        # Beat and worker share a host in local runs; only the first binds the port.
        logger.warning('worker metrics server not started port=%s', settings.worker_metrics_port)

import vocalizz_worker.tasks  # noqa: E402,F401
