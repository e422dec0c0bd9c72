"""Celery application configuration."""
from celery import Celery

from app.config import settings

celery_app = Celery(
    "video_platform",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.video_processing"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Hard limit sits above the per-invocation ffmpeg deadline
    task_time_limit=settings.ffmpeg_timeout_seconds * 3,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "sweep-stale-videos": {
            "task": "sweep_stale_videos",
            "schedule": float(settings.stale_sweep_interval_seconds),
        },
    },
)
