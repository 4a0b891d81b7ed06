"""Import log API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.api.jobs import get_import_log
from app.schemas.job import ImportLogEntry
from app.services.import_log import ImportLog

router = APIRouter(prefix="/api/import-log", tags=["import-log"])


@router.get("", response_model=List[ImportLogEntry])
def get_import_logs(
    vector_set_name: Optional[str] = Query(None, description="Logs for one vector set"),
    limit: int = Query(10, ge=1, le=100, description="Number of entries"),
    import_log: ImportLog = Depends(get_import_log),
):
    """Most recent completed imports, newest first."""
    return import_log.recent(vector_set_name, limit)
