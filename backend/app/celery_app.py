"""
Celery app for periodic maintenance (purge of self-deleted accounts).
Requires Redis: celery_broker_url and celery_result_backend in config.
Run: celery -A app.celery_app worker -B -l info
"""
from celery import Celery

from app.config import settings

broker = getattr(settings, "celery_broker_url", "redis://localhost:6379/0")
backend = getattr(settings, "celery_result_backend", "redis://localhost:6379/0")

celery_app = Celery(
    "learnathome",
    broker=broker,
    backend=backend,
    include=["app.jobs.celery_tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    beat_schedule={
        "purge-deleted-users": {
            "task": "app.jobs.celery_tasks.purge_deleted_users",
            "schedule": float(settings.purge_interval_seconds),
        },
    },
)
