"""
Shared dependencies and helpers for the API routers.

The destination store and the queue scheduler are created once in the
application lifespan and kept on ``app.state``; routers reach them
through the dependencies below.
"""
import json
from typing import Dict, NoReturn, Optional

from fastapi import HTTPException, Request, UploadFile

from import_hub.core.config import settings
from import_hub.domain.imports.destination import DestinationStore
from import_hub.domain.imports.errors import (
    DestinationNotFoundError,
    ImportJobNotFoundError,
    InvalidJobTransitionError,
    JobFatalError,
    ParseError,
    ReservedTableError,
)
from import_hub.domain.queue.errors import QueueTaskNotFoundError
from import_hub.domain.queue.scheduler import JobQueueScheduler


def get_destination_store(request: Request) -> DestinationStore:
    return request.app.state.destination_store


def get_scheduler(request: Request) -> JobQueueScheduler:
    return request.app.state.scheduler


async def read_upload(file: UploadFile) -> bytes:
    """
    Read an uploaded file, enforcing the configured size limit.

    Raises:
    - HTTPException 400: no filename
    - HTTPException 413: file larger than UPLOAD_MAX_FILE_SIZE_MB
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="Uploaded file has no filename")
    content = await file.read()
    max_bytes = settings.upload_max_file_size_mb * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {settings.upload_max_file_size_mb} MB upload limit",
        )
    return content


def parse_mapping_json(mapping_json: Optional[str]) -> Dict[str, Optional[str]]:
    if not mapping_json:
        raise HTTPException(status_code=400, detail="Field mapping required")
    try:
        mapping = json.loads(mapping_json)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid mapping JSON: {e.msg}")
    if not isinstance(mapping, dict):
        raise HTTPException(status_code=400, detail="Field mapping must be a JSON object")
    return {str(source): (target if target is None else str(target)) for source, target in mapping.items()}


def raise_http_error(exc: Exception) -> NoReturn:
    """Translate a pipeline or queue exception into the matching HTTPException."""
    if isinstance(exc, (ParseError, ReservedTableError, DestinationNotFoundError, ValueError)):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, (ImportJobNotFoundError, QueueTaskNotFoundError)):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, InvalidJobTransitionError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, JobFatalError):
        raise HTTPException(
            status_code=500, detail={"message": exc.message, "job_id": exc.job_id}
        ) from exc
    raise exc
