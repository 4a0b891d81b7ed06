"""Durable lifecycle management of import jobs."""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from app.exceptions import ValidationError
from app.schemas.job import (
    EmbeddingConfig,
    ExportType,
    JobMetadata,
    JobOptions,
    JobProgress,
    JobStatus,
    QueueItem,
    SourceKind,
)
from app.services.clock import SYSTEM_CLOCK, Clock
from app.services.job_store import (
    JobStore,
    job_id_from_key,
    job_metadata_key,
    job_queue_key,
    job_status_key,
    job_worker_key,
)
from app.services.normalizer import default_columns, normalize

BATCH_SIZE = 1000

VECTOR_SET_CONFIG_KEY = "vector-set-browser:config"

logger = logging.getLogger(__name__)


class JobQueueService:
    """
    Creates jobs, reads and merges their progress, and hands out queue items.

    Pause, resume and cancel are nothing more than status writes here; the
    processor decides what each status means.
    """

    def __init__(self, store: JobStore, clock: Clock = SYSTEM_CLOCK):
        self.store = store
        self.clock = clock

    def create_job(
        self,
        source,
        vector_set_name: str,
        embedding: EmbeddingConfig,
        options: Optional[JobOptions] = None,
    ) -> str:
        """
        Normalize ``source`` and persist metadata, progress and queue.

        Metadata and the initial progress record are written before any queue
        item, so a reader never sees items without their metadata.

        Args:
            source: CsvSource, JsonSource or ImageSource
            vector_set_name: Destination vector set
            embedding: Embedding provider configuration
            options: Column selection and export options

        Returns:
            The new job id

        Raises:
            ValidationError: invalid options
            NormalizationError: malformed source
        """
        options = options or JobOptions()
        if options.export_type == ExportType.JSON and not (options.output_filename or "").strip():
            raise ValidationError("Output filename is required when exporting to a JSON file")

        job_id = str(uuid.uuid4())
        logger.info(f"🆕 Creating job {job_id} for vector set {vector_set_name} ({source.kind})")

        normalized = normalize(source, options.attribute_columns)
        default_element, default_text = default_columns(normalized.columns)
        element_column = options.element_column or default_element
        text_column = options.text_column or default_text
        attribute_columns = options.attribute_columns
        if attribute_columns is None:
            attribute_columns = normalized.default_attribute_columns or []

        logger.info(
            f"📋 Job {job_id}: element column={element_column}, text column={text_column}, "
            f"attributes={attribute_columns}"
        )

        metadata = JobMetadata(
            job_id=job_id,
            filename=source.filename,
            vector_set_name=vector_set_name,
            embedding=embedding,
            source_kind=SourceKind(source.kind),
            element_column=element_column,
            text_column=text_column,
            element_template=options.element_template,
            text_template=options.text_template,
            attribute_columns=attribute_columns,
            total=normalized.total,
            delimiter=getattr(source, "delimiter", ","),
            has_header=getattr(source, "has_header", True),
            skip_rows=getattr(source, "skip_rows", 0),
            export_type=options.export_type,
            output_filename=options.output_filename,
            created_at=datetime.now(timezone.utc),
        )
        self.store.hash_set(job_metadata_key(job_id), metadata.model_dump_json())

        progress = JobProgress(
            status=JobStatus.PENDING,
            current=0,
            total=normalized.total,
            message="Job created",
            timestamp=self.clock.now_ms(),
        )
        self.store.hash_set(job_status_key(job_id), progress.model_dump_json())

        pushed = self.store.list_push_many(
            job_queue_key(job_id),
            (item.model_dump_json() for item in normalized.items),
            batch_size=BATCH_SIZE,
        )
        logger.info(f"✅ Job {job_id} created with {pushed} queued records")
        return job_id

    def get_progress(self, job_id: str) -> Optional[JobProgress]:
        raw = self.store.hash_get(job_status_key(job_id))
        if not raw:
            return None
        return JobProgress.model_validate_json(raw)

    def get_metadata(self, job_id: str) -> Optional[JobMetadata]:
        raw = self.store.hash_get(job_metadata_key(job_id))
        if not raw:
            return None
        return JobMetadata.model_validate_json(raw)

    def status_exists(self, job_id: str) -> bool:
        return self.store.exists(job_status_key(job_id))

    def update_progress(self, job_id: str, **partial: Any) -> JobProgress:
        """
        Merge ``partial`` into the persisted progress record.

        A missing record is synthesized from the job's metadata before the
        merge. ``current`` never moves backwards and never exceeds ``total``.

        Args:
            job_id: Job to update
            **partial: JobProgress fields to overwrite

        Returns:
            The merged progress record
        """
        current = self.get_progress(job_id)
        if current is None:
            metadata = self.get_metadata(job_id)
            total = metadata.total if metadata else 0
            logger.warning(f"⚠️ No progress record for job {job_id}, synthesizing one")
            current = JobProgress(status=JobStatus.PENDING, current=0, total=total)

        merged = current.model_copy(update=partial)
        merged.status = JobStatus(merged.status)
        merged.current = min(max(merged.current, current.current), max(merged.total, 0))
        merged.timestamp = self.clock.now_ms()

        self.store.hash_set(job_status_key(job_id), merged.model_dump_json())
        logger.debug(f"📊 Job {job_id} progress: {merged.status.value} {merged.current}/{merged.total}")
        return merged

    def pause_job(self, job_id: str) -> JobProgress:
        return self.update_progress(job_id, status=JobStatus.PAUSED, message="Job paused by user")

    def resume_job(self, job_id: str) -> JobProgress:
        return self.update_progress(job_id, status=JobStatus.PROCESSING, message="Job resumed")

    def cancel_job(self, job_id: str) -> JobProgress:
        return self.update_progress(job_id, status=JobStatus.CANCELLED, message="Job cancelled by user")

    def get_next_queue_item(self, job_id: str) -> Optional[QueueItem]:
        """Pop the head of the job's queue; the item is gone once returned."""
        raw = self.store.list_pop(job_queue_key(job_id))
        if raw is None:
            return None
        return QueueItem.model_validate_json(raw)

    def queue_length(self, job_id: str) -> int:
        return self.store.list_length(job_queue_key(job_id))

    def cleanup_job(self, job_id: str) -> None:
        """Delete queue, status, metadata and worker keys together."""
        logger.info(f"🧹 Cleaning up job {job_id}")
        self.store.delete(
            job_queue_key(job_id),
            job_status_key(job_id),
            job_metadata_key(job_id),
            job_worker_key(job_id),
        )

    def delete_status(self, job_id: str) -> None:
        self.store.delete(job_status_key(job_id))

    def acquire_worker(self, job_id: str, token: str, ttl: int) -> bool:
        """
        Claim the job for one worker.

        The claim expires after ``ttl`` seconds unless the holder refreshes it,
        so a crashed worker frees the job on its own.
        """
        return self.store.acquire_lease(job_worker_key(job_id), token, ttl)

    def refresh_worker(self, job_id: str, token: str, ttl: int) -> bool:
        return self.store.refresh_lease(job_worker_key(job_id), token, ttl)

    def release_worker(self, job_id: str, token: str) -> None:
        self.store.release_lease(job_worker_key(job_id), token)

    def has_worker(self, job_id: str) -> bool:
        return self.store.exists(job_worker_key(job_id))

    def list_jobs(self, vector_set_name: Optional[str] = None) -> list[tuple[str, JobProgress, JobMetadata]]:
        """
        List jobs that have both a progress record and metadata.

        Args:
            vector_set_name: Only include jobs importing into this vector set

        Returns:
            List of (job_id, progress, metadata) tuples, newest first
        """
        jobs = []
        for key in self.store.scan_keys(job_status_key("*")):
            job_id = job_id_from_key(key)
            progress = self.get_progress(job_id)
            metadata = self.get_metadata(job_id)
            if not progress or not metadata:
                continue
            if vector_set_name and metadata.vector_set_name != vector_set_name:
                continue
            jobs.append((job_id, progress, metadata))
        jobs.sort(key=lambda job: job[2].created_at, reverse=True)
        return jobs

    def get_vector_set_embedding(self, vector_set_name: str) -> Optional[EmbeddingConfig]:
        """Read the embedding configuration stored with a vector set, if any."""
        raw = self.store.hash_field_get(VECTOR_SET_CONFIG_KEY, f"vset:{vector_set_name}:metadata")
        if not raw:
            return None
        try:
            embedding = json.loads(raw).get("embedding")
        except (json.JSONDecodeError, AttributeError):
            logger.warning(f"⚠️ Unreadable metadata for vector set {vector_set_name}")
            return None
        if not embedding:
            return None
        return EmbeddingConfig.model_validate(embedding)
