"""Import job schemas: persisted job records and API payloads."""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Lifecycle states of an import job."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class SourceKind(str, Enum):
    CSV = "csv"
    JSON = "json"
    IMAGE = "image"


class ExportType(str, Enum):
    """Where processed vectors go: the vector set, or a JSON file."""

    REDIS = "redis"
    JSON = "json"


class OpenAIConfig(BaseModel):
    api_key: Optional[str] = None
    model: str = "text-embedding-3-small"
    cache_ttl: Optional[int] = None


class OllamaConfig(BaseModel):
    model_config = {"protected_namespaces": ()}

    api_url: str = "http://localhost:11434/api/embeddings"
    model_name: str
    prompt_template: Optional[str] = None


class NoEmbeddingConfig(BaseModel):
    model: str = "none"
    dimensions: int


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration captured with each job."""

    provider: Literal["openai", "ollama", "image", "clip", "none"]
    openai: Optional[OpenAIConfig] = None
    ollama: Optional[OllamaConfig] = None
    none: Optional[NoEmbeddingConfig] = None
    image: Optional[dict[str, Any]] = None
    clip: Optional[dict[str, Any]] = None

    def public_dump(self) -> dict[str, Any]:
        """Dump without credentials, for logs and audit records."""
        return self.model_dump(exclude={"openai": {"api_key"}}, exclude_none=True)


class CsvSource(BaseModel):
    """Delimited text with an optional header row."""

    kind: Literal["csv"] = "csv"
    content: str
    filename: str = "import.csv"
    delimiter: str = ","
    has_header: bool = True
    skip_rows: int = Field(0, ge=0)


class JsonSource(BaseModel):
    """A single JSON object or an array of objects."""

    kind: Literal["json"] = "json"
    content: Union[str, list, dict]
    filename: str = "import.json"


class ImageSource(BaseModel):
    """Images embedded by the caller before the job was created."""

    kind: Literal["image"] = "image"
    vectors: list[list[float]]
    filenames: Optional[list[str]] = None
    filename: str = "images"


ImportSource = Annotated[
    Union[CsvSource, JsonSource, ImageSource], Field(discriminator="kind")
]


class JobOptions(BaseModel):
    """Column selection and destination options for a new job."""

    element_column: Optional[str] = None
    text_column: Optional[str] = None
    element_template: Optional[str] = None
    text_template: Optional[str] = None
    attribute_columns: Optional[list[str]] = None
    export_type: ExportType = ExportType.REDIS
    output_filename: Optional[str] = None


class JobMetadata(BaseModel):
    """Immutable configuration snapshot written when a job is created."""

    job_id: str
    filename: str
    vector_set_name: str
    embedding: EmbeddingConfig
    source_kind: SourceKind
    element_column: Optional[str] = None
    text_column: Optional[str] = None
    element_template: Optional[str] = None
    text_template: Optional[str] = None
    attribute_columns: list[str] = Field(default_factory=list)
    total: int
    delimiter: str = ","
    has_header: bool = True
    skip_rows: int = 0
    export_type: ExportType = ExportType.REDIS
    output_filename: Optional[str] = None
    created_at: datetime


class JobProgress(BaseModel):
    """Mutable progress record, polled by API clients."""

    status: JobStatus = JobStatus.PENDING
    current: int = 0
    total: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    timestamp: Optional[int] = None


class QueueItem(BaseModel):
    """One normalized input record awaiting embedding."""

    index: int
    fields: dict[str, str]
    precomputed_vector: Optional[list[float]] = None


class ImportLogEntry(BaseModel):
    """Audit record for a completed import."""

    job_id: str
    timestamp: int
    vector_set_name: str
    filename: str
    records_processed: int
    total_records: int
    embedding: dict[str, Any]
    status: Literal["completed"] = "completed"
    export_path: Optional[str] = None


class CreateJobRequest(BaseModel):
    """Request to create an import job."""

    vector_set_name: str = Field(..., min_length=1, max_length=500)
    source: ImportSource
    embedding: Optional[EmbeddingConfig] = None
    options: JobOptions = Field(default_factory=JobOptions)


class CreateJobResponse(BaseModel):
    """Response after the job was queued for processing."""

    job_id: str
    status: JobStatus
    total: int
    message: str = "Import job created"


class JobResponse(BaseModel):
    """Job status response."""

    job_id: str
    status: JobProgress
    metadata: JobMetadata


class CompletedJobsResponse(BaseModel):
    """Recently completed imports."""

    items: list[ImportLogEntry]
    server_time: int


class JobActionResponse(BaseModel):
    """Result of a pause, resume or cancel request."""

    job_id: str
    status: JobStatus
    message: str


class ValidateImportRequest(BaseModel):
    """Sample text embedded to check an import against its vector set."""

    vector_set_name: str = Field(..., min_length=1, max_length=500)
    text: str
    embedding: Optional[EmbeddingConfig] = None


class ValidateImportResponse(BaseModel):
    """Dimensions of the vector set and of the sample embedding."""

    valid: bool
    expected: int
    actual: int
