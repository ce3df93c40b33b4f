"""Celery application for payment background jobs.

Status polling is the only workload: single-transaction queries go to the
``high`` queue, the periodic pending sweep to ``default``.
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)

logger = get_logger(__name__)

celery_app = Celery("payment_gateway")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    # JSON only: task payloads carry transaction ids, never pickled objects
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A poll that dies with its worker is redelivered; polling is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    # Provider HTTP timeouts are a few seconds; a sweep over one batch must not hang a worker
    task_soft_time_limit=240,
    task_time_limit=300,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
    ),
    task_routes={
        "payments.query_status": {"queue": "high"},
        "payments.poll_pending": {"queue": "default"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.imports = CELERY_IMPORTS

environment = (getattr(settings, "ENVIRONMENT", "production") or "production").lower()
if environment in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        environment=environment,
        eager=bool(sender.conf.task_always_eager),
        queues=[q.name for q in sender.conf.task_queues],
    )
