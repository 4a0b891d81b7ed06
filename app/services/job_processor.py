"""Worker loop that drains one import job's queue into its destination."""
import logging
import uuid
from typing import Any, Callable, Optional

from app.exceptions import JobNotFound
from app.schemas.job import (
    ExportType,
    ImportLogEntry,
    JobMetadata,
    JobProgress,
    JobStatus,
    QueueItem,
)
from app.services.clock import SYSTEM_CLOCK, Clock
from app.services.embedding import EmbeddingGenerator
from app.services.import_log import ImportLog
from app.services.job_queue import JobQueueService
from app.services.sinks import ExportRecord, JsonExporter, VectorSetSink
from app.services.templating import resolve_value

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, dict[str, Any]], None]


class JobProcessor:
    """
    Processes one job, one item at a time, in queue order.

    Pause and cancel are cooperative: the persisted status is checked once
    per iteration before dequeuing, and an item that was dequeued is always
    processed to completion (or to a per-item error) first.
    """

    def __init__(
        self,
        job_id: str,
        queue: JobQueueService,
        embedder: EmbeddingGenerator,
        vector_sink: VectorSetSink,
        exporter: JsonExporter,
        import_log: ImportLog,
        clock: Clock = SYSTEM_CLOCK,
        pause_interval: float = 1.0,
        error_backoff: float = 1.0,
        lease_ttl: int = 60,
        on_event: Optional[EventCallback] = None,
    ):
        self.job_id = job_id
        self.queue = queue
        self.embedder = embedder
        self.vector_sink = vector_sink
        self.exporter = exporter
        self.import_log = import_log
        self.clock = clock
        self.pause_interval = pause_interval
        self.error_backoff = error_backoff
        self.lease_ttl = lease_ttl
        self.on_event = on_event
        self.worker_token = uuid.uuid4().hex

        self.is_running = False
        self.is_paused = False
        self.metadata: Optional[JobMetadata] = None
        self._export_records: list[ExportRecord] = []
        self._final_progress: Optional[JobProgress] = None

    def start(self) -> Optional[JobProgress]:
        """
        Run the loop until the queue drains, the job is cancelled or deleted,
        or a fatal error occurs.

        Returns:
            The last persisted progress, or None when the job was deleted or
            another worker already holds it

        Raises:
            JobNotFound: the job has no metadata
        """
        if self.is_running:
            logger.info(f"⏭️ Job {self.job_id} is already running")
            return None

        self.metadata = self.queue.get_metadata(self.job_id)
        if self.metadata is None:
            logger.error(f"❌ No metadata found for job {self.job_id}")
            raise JobNotFound(self.job_id)

        if not self.queue.acquire_worker(self.job_id, self.worker_token, self.lease_ttl):
            logger.info(f"⏭️ Job {self.job_id} already has a live worker, not starting another")
            return None

        logger.info(
            f"🚀 Starting job {self.job_id}: {self.metadata.total} records "
            f"-> {self.metadata.vector_set_name} ({self.metadata.export_type.value})"
        )
        self.is_running = True
        self.is_paused = False
        self._export_records = []
        self._final_progress = None

        try:
            self._update_progress(status=JobStatus.PROCESSING, message="Processing started")
            self._emit("import.started", {"filename": self.metadata.filename})
            while self.is_running:
                self._iterate()
        except Exception as e:
            logger.error(f"💥 Job {self.job_id} failed: {e}", exc_info=True)
            self._fail(e)
        finally:
            self.is_running = False
            self._release_worker()
            logger.info(f"🏁 Job {self.job_id} finished")

        return self._final_progress

    def _iterate(self) -> None:
        if self.is_paused:
            self._wait_while_paused()
            return

        if not self._healthy():
            self.is_running = False
            return
        if not self._keep_worker():
            return

        progress = self.queue.get_progress(self.job_id)
        if progress is None:
            logger.info(f"🛑 Job {self.job_id} progress no longer exists, stopping")
            self.is_running = False
            return
        if progress.status == JobStatus.CANCELLED:
            logger.info(f"🛑 Job {self.job_id} was cancelled")
            self._final_progress = progress
            self._emit("import.cancelled", {"processed": progress.current})
            self.is_running = False
            return
        if progress.status == JobStatus.PAUSED:
            logger.info(f"⏸️ Job {self.job_id} was paused")
            self.is_paused = True
            return
        if progress.status.is_terminal:
            logger.info(f"🛑 Job {self.job_id} is already {progress.status.value}")
            self._final_progress = progress
            self.is_running = False
            return

        item = self.queue.get_next_queue_item(self.job_id)
        if item is None:
            self._complete()
            return

        self._process_item(item)

    def _wait_while_paused(self) -> None:
        progress = self.queue.get_progress(self.job_id)
        if progress is None or progress.status == JobStatus.CANCELLED:
            logger.info(f"🛑 Job {self.job_id} was cancelled while paused")
            self._final_progress = progress
            if progress is not None:
                self._emit("import.cancelled", {"processed": progress.current})
            self.is_running = False
            return
        if progress.status == JobStatus.PROCESSING:
            logger.info(f"▶️ Job {self.job_id} was resumed")
            self.is_paused = False
            return

        if not self._keep_worker():
            return
        logger.debug(f"⏸️ Job {self.job_id} is paused, waiting...")
        self.clock.sleep(self.pause_interval)

    def _healthy(self) -> bool:
        """Stop on a deleted job; heal a status key left without metadata."""
        if not self.queue.status_exists(self.job_id):
            logger.info(f"🛑 Job {self.job_id} status no longer exists, stopping")
            return False

        if self.queue.get_metadata(self.job_id) is None:
            logger.warning(
                f"🧹 Job {self.job_id} metadata no longer exists but status does, removing orphaned status"
            )
            self.queue.delete_status(self.job_id)
            return False
        return True

    def _keep_worker(self) -> bool:
        """Extend this worker's claim on the job; stop if another worker took it."""
        if self.queue.refresh_worker(self.job_id, self.worker_token, self.lease_ttl):
            return True
        logger.warning(f"⚠️ Job {self.job_id} was claimed by another worker, stopping")
        self.is_running = False
        return False

    def _release_worker(self) -> None:
        try:
            self.queue.release_worker(self.job_id, self.worker_token)
        except Exception as e:
            # The claim expires on its own
            logger.warning(f"⚠️ Could not release worker claim for job {self.job_id}: {e}")

    def _process_item(self, item: QueueItem) -> None:
        number = item.index + 1
        try:
            message = self._embed_and_store(item)
            self._update_progress(current=number, message=message)
        except Exception as e:
            logger.error(f"❌ Error processing item {number} of job {self.job_id}: {e}")
            self._update_progress(current=number, message=f"Error processing item {number}: {e}")
            self.clock.sleep(self.error_backoff)

    def _embed_and_store(self, item: QueueItem) -> str:
        metadata = self.metadata
        number = item.index + 1

        element_id = resolve_value(item.fields, metadata.element_template, metadata.element_column)
        if not element_id.strip():
            logger.warning(f"⚠️ Skipping item {number}: missing element identifier")
            return f"Skipped item {number}: Missing element identifier"

        if item.precomputed_vector:
            vector = item.precomputed_vector
        else:
            text = resolve_value(item.fields, metadata.text_template, metadata.text_column)
            if not text.strip():
                logger.warning(f"⚠️ Skipping item {number}: missing text to embed")
                return f"Skipped item {number}: Missing text to embed"
            vector = self.embedder.embed(text, metadata.embedding)

        attributes = {
            column: item.fields[column]
            for column in metadata.attribute_columns
            if column in item.fields
        }

        if metadata.export_type == ExportType.JSON:
            self._export_records.append(ExportRecord(element_id, vector, attributes))
        else:
            self.vector_sink.insert(metadata.vector_set_name, element_id, vector, attributes or None)

        logger.debug(f"✅ Item {number} of job {self.job_id} stored as '{element_id}'")
        return f"Processed item {number}"

    def _complete(self) -> None:
        metadata = self.metadata
        logger.info(f"🏁 No more items in queue for job {self.job_id}")

        # A cancel can land between the status check and the empty pop
        latest = self.queue.get_progress(self.job_id)
        if latest is None or latest.status.is_terminal:
            logger.info(f"🛑 Job {self.job_id} ended before completion, skipping export and import log")
            self._final_progress = latest
            if latest is not None and latest.status == JobStatus.CANCELLED:
                self._emit("import.cancelled", {"processed": latest.current})
            self.is_running = False
            return

        export_path = None
        if metadata.export_type == ExportType.JSON:
            export_path = self.exporter.flush(
                metadata.output_filename, self._export_records, metadata.vector_set_name
            )

        processed = latest.current
        self.import_log.append(
            ImportLogEntry(
                job_id=self.job_id,
                timestamp=self.clock.now_ms(),
                vector_set_name=metadata.vector_set_name,
                filename=metadata.filename,
                records_processed=processed,
                total_records=metadata.total,
                embedding=metadata.embedding.public_dump(),
                export_path=export_path,
            )
        )

        message = "Processing completed"
        if export_path:
            message = f"Processing completed, exported to {export_path}"
        self._final_progress = self._update_progress(status=JobStatus.COMPLETED, message=message)
        self.is_running = False
        if self._final_progress is None or self._final_progress.status != JobStatus.COMPLETED:
            return

        self._emit("import.completed", {"processed": processed, "export_path": export_path})
        self.queue.cleanup_job(self.job_id)

    def _fail(self, error: Exception) -> None:
        try:
            self._final_progress = self._update_progress(
                status=JobStatus.FAILED, error=str(error), message="Job failed"
            )
        except Exception as store_error:
            logger.error(f"💥 Could not mark job {self.job_id} as failed: {store_error}")
            return
        self._emit("import.failed", {"error": str(error)})

    def _update_progress(self, **partial: Any) -> Optional[JobProgress]:
        """
        Merge a progress update unless the job is gone, and never replace a
        terminal status with a different one.
        """
        if not self.queue.status_exists(self.job_id):
            logger.info(f"Job {self.job_id} status no longer exists, skipping progress update")
            return None

        new_status = partial.get("status")
        current = self.queue.get_progress(self.job_id)
        if current and current.status.is_terminal and current.status != new_status:
            if new_status is not None:
                logger.info(
                    f"Job {self.job_id} is {current.status.value}, ignoring status change to {new_status.value}"
                )
            # Terminal status and its message stay; progress counts still merge
            partial = {k: v for k, v in partial.items() if k not in ("status", "message", "error")}
            if not partial:
                return current

        return self.queue.update_progress(self.job_id, **partial)

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        if self.on_event is None or self.metadata is None:
            return
        payload = {
            "event": event,
            "data": {"job_id": self.job_id, "vector_set_name": self.metadata.vector_set_name, **data},
        }
        try:
            self.on_event(event, payload)
        except Exception as e:
            logger.warning(f"⚠️ Failed to deliver {event} for job {self.job_id}: {e}")

    def pause(self) -> None:
        logger.info(f"⏸️ Pausing job {self.job_id}")
        self.is_paused = True
        self._update_progress(status=JobStatus.PAUSED, message="Job paused")

    def resume(self) -> None:
        progress = self.queue.get_progress(self.job_id)
        if progress is not None and progress.status.is_terminal:
            logger.info(f"Job {self.job_id} is {progress.status.value}, not resuming")
            return

        logger.info(f"▶️ Resuming job {self.job_id}")
        self.is_paused = False
        if progress is not None and progress.status == JobStatus.PROCESSING:
            return
        self._update_progress(status=JobStatus.PROCESSING, message="Job resumed")

    def stop(self) -> None:
        logger.info(f"🛑 Stopping job {self.job_id}")
        self.is_running = False
        self._final_progress = self._update_progress(status=JobStatus.CANCELLED, message="Job cancelled")
        if self._final_progress is not None:
            self._emit("import.cancelled", {"processed": self._final_progress.current})
