"""Celery application configuration."""
from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "vector_importer",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks.import_tasks"],
)

celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    # Task results are only read for diagnostics
    result_expires=3600,
    # One long-running job loop per worker process
    worker_prefetch_multiplier=1,
    task_acks_late=False,
)
