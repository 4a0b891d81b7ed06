"""Import job API endpoints."""
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from app.config import get_settings
from app.exceptions import EmbeddingError, NormalizationError, SinkError, ValidationError
from app.redis_client import get_redis, redis_connection
from app.schemas.job import (
    CompletedJobsResponse,
    CreateJobRequest,
    CreateJobResponse,
    CsvSource,
    EmbeddingConfig,
    ExportType,
    JobActionResponse,
    JobOptions,
    JobProgress,
    JobResponse,
    JobStatus,
    JsonSource,
    ValidateImportRequest,
    ValidateImportResponse,
)
from app.services.clock import SYSTEM_CLOCK
from app.services.embedding import EmbeddingGenerator
from app.services.import_log import ImportLog
from app.services.job_queue import JobQueueService
from app.services.job_store import JobStore
from app.services.sinks import VectorSetSink
from app.tasks.import_tasks import process_import_job

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

settings = get_settings()
logger = logging.getLogger(__name__)

STREAM_POLL_INTERVAL = 1.0


def get_job_queue(client=Depends(get_redis)) -> JobQueueService:
    """Dependency for the job queue service."""
    return JobQueueService(JobStore(client))


def get_import_log(client=Depends(get_redis)) -> ImportLog:
    """Dependency for the import log."""
    return ImportLog(JobStore(client), settings.import_log_max_entries)


def get_embedder(client=Depends(get_redis)):
    """Dependency for an embedding generator with a per-request HTTP client."""
    with httpx.Client(timeout=settings.embedding_timeout) as http_client:
        yield EmbeddingGenerator(http_client, cache=client)


def _resolve_embedding(
    queue: JobQueueService, vector_set_name: str, embedding: Optional[EmbeddingConfig]
) -> EmbeddingConfig:
    if embedding is None:
        embedding = queue.get_vector_set_embedding(vector_set_name)
        if embedding is None:
            raise HTTPException(
                status_code=400,
                detail=f"No embedding configuration found for vector set '{vector_set_name}'",
            )
    return embedding


def _create_and_dispatch(
    queue: JobQueueService,
    vector_set_name: str,
    source,
    embedding: Optional[EmbeddingConfig],
    options: JobOptions,
) -> CreateJobResponse:
    embedding = _resolve_embedding(queue, vector_set_name, embedding)

    try:
        job_id = queue.create_job(source, vector_set_name, embedding, options)
    except (ValidationError, NormalizationError) as e:
        logger.warning(f"❌ Job creation rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"🚀 Dispatching Celery task for job {job_id}")
    process_import_job.delay(job_id)

    progress = queue.get_progress(job_id)
    return CreateJobResponse(job_id=job_id, status=progress.status, total=progress.total)


def _require_progress(queue: JobQueueService, job_id: str) -> JobProgress:
    progress = queue.get_progress(job_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return progress


def _reject_terminal(progress: JobProgress) -> None:
    if progress.status.is_terminal:
        raise HTTPException(status_code=409, detail=f"Job is already {progress.status.value}")


@router.post("", response_model=CreateJobResponse, status_code=201)
def create_job(request: CreateJobRequest, queue: JobQueueService = Depends(get_job_queue)):
    """
    Create an import job from an inline source and start processing it.

    The source is CSV text, JSON records, or precomputed image vectors. When no
    embedding configuration is given, the vector set's stored one is used.
    """
    return _create_and_dispatch(
        queue, request.vector_set_name, request.source, request.embedding, request.options
    )


@router.post("/upload", response_model=CreateJobResponse, status_code=201)
async def upload_import_file(
    file: UploadFile = File(...),
    vector_set_name: str = Form(...),
    embedding: Optional[str] = Form(None, description="EmbeddingConfig as JSON"),
    element_column: Optional[str] = Form(None),
    text_column: Optional[str] = Form(None),
    element_template: Optional[str] = Form(None),
    text_template: Optional[str] = Form(None),
    attribute_columns: Optional[List[str]] = Form(None),
    delimiter: str = Form(","),
    has_header: bool = Form(True),
    skip_rows: int = Form(0, ge=0),
    export_type: ExportType = Form(ExportType.REDIS),
    output_filename: Optional[str] = Form(None),
    queue: JobQueueService = Depends(get_job_queue),
):
    """
    Create an import job from an uploaded CSV or JSON file.

    The file type is taken from the extension. Files are read in chunks and
    rejected above the configured size limit.
    """
    filename = file.filename or ""
    logger.info(f"📁 Starting import upload: filename={filename}, vector_set={vector_set_name}")

    suffix = Path(filename).suffix.lower()
    if suffix not in (".csv", ".json"):
        logger.warning(f"❌ Invalid file type: {filename}")
        raise HTTPException(status_code=400, detail="Only CSV and JSON files are allowed")

    chunks = []
    size = 0
    content = await file.read(8192)
    while content:
        size += len(content)
        if size > settings.max_upload_bytes:
            logger.warning(f"❌ File too large: {size} bytes")
            raise HTTPException(status_code=413, detail="File too large")
        chunks.append(content)
        content = await file.read(8192)

    try:
        text = b"".join(chunks).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be UTF-8 encoded")
    logger.info(f"✅ Upload read: {size} bytes")

    embedding_config = None
    if embedding:
        try:
            embedding_config = EmbeddingConfig.model_validate_json(embedding)
        except PydanticValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid embedding configuration: {e}")

    if suffix == ".csv":
        source = CsvSource(
            content=text,
            filename=filename,
            delimiter=delimiter,
            has_header=has_header,
            skip_rows=skip_rows,
        )
    else:
        source = JsonSource(content=text, filename=filename)

    options = JobOptions(
        element_column=element_column or None,
        text_column=text_column or None,
        element_template=element_template or None,
        text_template=text_template or None,
        attribute_columns=attribute_columns or None,
        export_type=export_type,
        output_filename=output_filename or None,
    )
    return _create_and_dispatch(queue, vector_set_name, source, embedding_config, options)


@router.post("/validate", response_model=ValidateImportResponse)
def validate_import(
    request: ValidateImportRequest,
    client=Depends(get_redis),
    queue: JobQueueService = Depends(get_job_queue),
    embedder: EmbeddingGenerator = Depends(get_embedder),
):
    """
    Check an import against its vector set before creating the job.

    Embeds the sample text and compares the vector's length with the set's
    ``VDIM``. A mismatch returns 400 with both dimensions in the detail.
    """
    if not request.text.strip():
        raise HTTPException(status_code=400, detail="No text provided")

    embedding = _resolve_embedding(queue, request.vector_set_name, request.embedding)
    try:
        expected = VectorSetSink(client).dimension(request.vector_set_name)
        actual = len(embedder.embed(request.text, embedding))
    except (SinkError, EmbeddingError) as e:
        logger.warning(f"❌ Import validation failed for {request.vector_set_name}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    if actual != expected:
        logger.warning(f"❌ Dimension mismatch for {request.vector_set_name}: expected {expected}, got {actual}")
        raise HTTPException(
            status_code=400,
            detail={
                "message": (
                    f"Vector dimension mismatch: embeddings from this import have {actual} dimensions, "
                    f"but vector set '{request.vector_set_name}' requires {expected}"
                ),
                "expected": expected,
                "actual": actual,
            },
        )

    logger.info(f"✅ Import for {request.vector_set_name} validated ({actual} dimensions)")
    return ValidateImportResponse(valid=True, expected=expected, actual=actual)


@router.get("", response_model=List[JobResponse])
def list_jobs(
    vector_set_name: Optional[str] = Query(None, description="Only jobs for this vector set"),
    queue: JobQueueService = Depends(get_job_queue),
):
    """List active and unfinished jobs with their progress and metadata."""
    return [
        JobResponse(job_id=job_id, status=progress, metadata=metadata)
        for job_id, progress, metadata in queue.list_jobs(vector_set_name)
    ]


@router.get("/completed", response_model=CompletedJobsResponse)
def completed_jobs(
    since: int = Query(0, ge=0, description="Epoch milliseconds"),
    vector_set_name: Optional[str] = Query(None),
    import_log: ImportLog = Depends(get_import_log),
):
    """
    Imports completed after ``since``.

    Clients pass back the returned ``server_time`` on their next poll.
    """
    return CompletedJobsResponse(
        items=import_log.completed_since(since, vector_set_name),
        server_time=SYSTEM_CLOCK.now_ms(),
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, queue: JobQueueService = Depends(get_job_queue)):
    """
    Get job status and progress.

    Completed jobs are removed once they finish; use the import log for them.
    """
    progress = _require_progress(queue, job_id)
    metadata = queue.get_metadata(job_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse(job_id=job_id, status=progress, metadata=metadata)


@router.get("/{job_id}/stream")
async def stream_progress(job_id: str, queue: JobQueueService = Depends(get_job_queue)):
    """
    Server-Sent Events endpoint for job progress.

    Polls the progress record and emits it whenever it changes, closing the
    stream when the job reaches a terminal status or disappears.
    """
    _require_progress(queue, job_id)

    async def event_generator():
        last_timestamp = None
        with redis_connection() as client:
            stream_queue = JobQueueService(JobStore(client))
            try:
                while True:
                    progress = stream_queue.get_progress(job_id)
                    if progress is None:
                        yield f"data: {json.dumps({'status': 'deleted'})}\n\n"
                        break

                    if progress.timestamp != last_timestamp:
                        last_timestamp = progress.timestamp
                        yield f"data: {progress.model_dump_json()}\n\n"

                    if progress.status.is_terminal:
                        break

                    await asyncio.sleep(STREAM_POLL_INTERVAL)
            except Exception as e:
                logger.warning(f"SSE stream error for job {job_id}: {str(e)}")
                yield f"data: {json.dumps({'status': 'error', 'error': 'Stream error'})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post("/{job_id}/pause", response_model=JobActionResponse)
def pause_job(job_id: str, queue: JobQueueService = Depends(get_job_queue)):
    """Pause a job; the worker stops before taking its next record."""
    progress = _require_progress(queue, job_id)
    _reject_terminal(progress)
    if progress.status != JobStatus.PAUSED:
        progress = queue.pause_job(job_id)
    logger.info(f"⏸️ Job {job_id} paused")
    return JobActionResponse(job_id=job_id, status=progress.status, message="Job paused")


@router.post("/{job_id}/resume", response_model=JobActionResponse)
def resume_job(
    job_id: str,
    restart: bool = Query(False, description="Start a new worker for this job"),
    queue: JobQueueService = Depends(get_job_queue),
):
    """
    Resume a paused job.

    Use ``restart=true`` when the job's worker is gone (for example after a
    worker restart) and a new one must pick the queue up. A worker holds a
    short-lived claim on its job and refreshes it while running or paused, so
    no new task is sent while that claim is alive; a task that races past
    this check still exits without processing when it cannot take the claim.
    """
    progress = _require_progress(queue, job_id)
    _reject_terminal(progress)
    if progress.status != JobStatus.PROCESSING:
        progress = queue.resume_job(job_id)
    if restart:
        if queue.has_worker(job_id):
            logger.info(f"⏭️ Job {job_id} still has a live worker, not re-dispatching")
        else:
            logger.info(f"🚀 Re-dispatching Celery task for job {job_id}")
            process_import_job.delay(job_id)
    return JobActionResponse(job_id=job_id, status=progress.status, message="Job resumed")


@router.post("/{job_id}/cancel", response_model=JobActionResponse)
def cancel_job(job_id: str, queue: JobQueueService = Depends(get_job_queue)):
    """Cancel a job; its state is kept until it is deleted."""
    progress = _require_progress(queue, job_id)
    _reject_terminal(progress)
    progress = queue.cancel_job(job_id)
    logger.info(f"🛑 Job {job_id} cancelled")
    return JobActionResponse(job_id=job_id, status=progress.status, message="Job cancelled")


@router.delete("/{job_id}", response_model=JobActionResponse)
def delete_job(job_id: str, queue: JobQueueService = Depends(get_job_queue)):
    """Cancel a job if it is still active, then delete all of its state."""
    progress = queue.get_progress(job_id)
    if progress is None and queue.get_metadata(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    status = progress.status if progress else JobStatus.CANCELLED
    if progress is not None and not progress.status.is_terminal:
        status = queue.cancel_job(job_id).status
    queue.cleanup_job(job_id)
    return JobActionResponse(job_id=job_id, status=status, message="Job removed")
