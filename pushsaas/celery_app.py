"""Celery application for out-of-process campaign dispatch."""
from __future__ import annotations

from typing import Optional

from celery import Celery
from pydantic import AnyUrl

from pushsaas.config import settings


def _redis_fallback(url: Optional[AnyUrl]) -> str:
    return str(url) if url is not None else str(settings.REDIS_URL)


celery_app = Celery(
    "pushsaas",
    broker=_redis_fallback(settings.CELERY_BROKER_URL),
    backend=_redis_fallback(settings.CELERY_RESULT_BACKEND),
    include=["pushsaas.tasks.campaigns"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 60 * 60,
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Redelivery is harmless: the dispatcher's status claim lets one run through.
    task_acks_late=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "sweep-overdue-campaigns": {
        "task": "pushsaas.tasks.campaigns.sweep_overdue_campaigns",
        "schedule": settings.SCHEDULER_SWEEP_INTERVAL_SECONDS,
        "options": {"expires": settings.SCHEDULER_SWEEP_INTERVAL_SECONDS},
    },
}

__all__ = ["celery_app"]
