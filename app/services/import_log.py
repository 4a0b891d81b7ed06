"""Bounded audit log of completed imports, kept in Redis lists."""
import logging
from typing import Optional

from app.schemas.job import ImportLogEntry
from app.services.job_store import JobStore

GLOBAL_LOG_KEY = "global:importlog"

logger = logging.getLogger(__name__)


def vector_set_log_key(vector_set_name: str) -> str:
    return f"vectorset:{vector_set_name}:importlog"


class ImportLog:
    """Appends to a global and a per-vector-set list, trimming both."""

    def __init__(self, store: JobStore, max_entries: int = 100):
        self.store = store
        self.max_entries = max_entries

    def append(self, entry: ImportLogEntry) -> None:
        value = entry.model_dump_json()
        for key in (GLOBAL_LOG_KEY, vector_set_log_key(entry.vector_set_name)):
            self.store.list_push(key, value)
            self.store.list_trim(key, -self.max_entries, -1)
        logger.info(f"📝 Import log entry written for job {entry.job_id}")

    def recent(self, vector_set_name: Optional[str] = None, limit: int = 10) -> list[ImportLogEntry]:
        """Newest entries first."""
        key = vector_set_log_key(vector_set_name) if vector_set_name else GLOBAL_LOG_KEY
        raw = self.store.list_range(key, -limit, -1)
        return [ImportLogEntry.model_validate_json(r) for r in reversed(raw)]

    def completed_since(self, since_ms: int, vector_set_name: Optional[str] = None) -> list[ImportLogEntry]:
        entries = self.recent(vector_set_name, limit=self.max_entries)
        return [e for e in entries if e.timestamp > since_ms]
