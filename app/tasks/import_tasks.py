"""Celery tasks for running import jobs."""
import logging
from typing import Callable, Optional

import httpx
import redis

from app.config import get_settings
from app.database import SessionLocal
from app.exceptions import JobNotFound
from app.redis_client import redis_connection
from app.services.clock import SYSTEM_CLOCK, Clock
from app.services.embedding import EmbeddingGenerator
from app.services.import_log import ImportLog
from app.services.job_processor import JobProcessor
from app.services.job_queue import JobQueueService
from app.services.job_store import JobStore
from app.services.sinks import JsonExporter, VectorSetSink
from app.services.webhook_service import webhook_notifier
from app.tasks.celery_app import celery_app

settings = get_settings()
logger = logging.getLogger(__name__)


def build_processor(
    job_id: str,
    client: redis.Redis,
    http_client: httpx.Client,
    on_event: Optional[Callable] = None,
    clock: Clock = SYSTEM_CLOCK,
) -> JobProcessor:
    """
    Wire a JobProcessor to the given Redis and HTTP clients.

    Args:
        job_id: Job to process
        client: Redis client for job state, vector sets and the embedding cache
        http_client: HTTP client for embedding providers
        on_event: Lifecycle event callback
        clock: Time source

    Returns:
        Processor ready to start
    """
    store = JobStore(client)
    queue = JobQueueService(store, clock)
    return JobProcessor(
        job_id,
        queue=queue,
        embedder=EmbeddingGenerator(http_client, cache=client),
        vector_sink=VectorSetSink(client),
        exporter=JsonExporter(settings.export_dir),
        import_log=ImportLog(store, settings.import_log_max_entries),
        clock=clock,
        pause_interval=settings.pause_poll_interval,
        error_backoff=settings.error_backoff,
        lease_ttl=settings.worker_lease_ttl,
        on_event=on_event,
    )


@celery_app.task(bind=True)
def process_import_job(self, job_id: str) -> dict:
    """
    Drain one import job's queue in the background.

    Runs until the job completes, is cancelled, paused-then-cancelled,
    deleted, or fails. This runs in a Celery worker, NOT in web request context.

    Args:
        self: Celery task instance
        job_id: Import job ID

    Returns:
        Dict with the job's final status and counts
    """
    logger.info(f"🚀 Starting import task: job_id={job_id}")

    db = SessionLocal()
    try:
        with redis_connection() as client, httpx.Client(timeout=settings.embedding_timeout) as http_client:
            processor = build_processor(job_id, client, http_client, on_event=webhook_notifier(db))
            progress = processor.start()
    except JobNotFound:
        logger.error(f"❌ Job not found in Redis: {job_id}")
        raise
    finally:
        db.close()

    if progress is None:
        logger.info(f"🧹 Job {job_id} was removed while running or is held by another worker")
        return {"job_id": job_id, "status": None}

    result = {
        "job_id": job_id,
        "status": progress.status.value,
        "processed": progress.current,
        "total": progress.total,
        "error": progress.error,
    }
    logger.info(f"🎉 Task finished: {result}")
    return result
