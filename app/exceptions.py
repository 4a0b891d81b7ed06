"""Error types raised by the import pipeline."""


class ImportServiceError(Exception):
    """Base class for import pipeline errors."""


class ValidationError(ImportServiceError):
    """Job configuration is invalid; nothing was persisted."""


class NormalizationError(ImportServiceError):
    """The import source could not be parsed into records."""


class JobNotFound(ImportServiceError):
    """No metadata exists for the requested job."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class EmbeddingError(ImportServiceError):
    """The embedding provider failed for a single payload."""

    def __init__(self, reason: str):
        super().__init__(f"embedding failed: {reason}")
        self.reason = reason


class SinkError(ImportServiceError):
    """Writing a vector to its destination failed."""
