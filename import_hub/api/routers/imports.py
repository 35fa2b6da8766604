"""
Upload endpoints: preview a file, validate it against a target table and
run the import.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from import_hub.api.dependencies import (
    get_destination_store,
    get_scheduler,
    parse_mapping_json,
    raise_http_error,
    read_upload,
)
from import_hub.api.schemas.shared import (
    ImportPreviewResponse,
    ImportSubmissionResponse,
    ValidationResultResponse,
)
from import_hub.domain.imports import orchestrator
from import_hub.domain.imports.destination import DestinationStore
from import_hub.domain.queue.scheduler import JobQueueScheduler

router = APIRouter(tags=["imports"])

logger = logging.getLogger(__name__)


@router.post("/imports/preview", response_model=ImportPreviewResponse)
async def preview_import_endpoint(
    file: UploadFile = File(...),
    target_table: str = Form(...),
    template_id: Optional[str] = Form(None),
):
    """
    Parse an uploaded file and propose a field mapping.

    Parameters:
    - file: The file to preview (CSV, Excel, JSON, or XML)
    - target_table: Destination table the mapping is suggested for
    - template_id: Optional saved template used to pre-fill the mapping

    Returns:
    - Headers, total rows and the first rows of the file
    - Suggested mapping and whether it came from a template
    """
    content = await read_upload(file)
    try:
        return orchestrator.preview_import(
            content, filename=file.filename, target_table=target_table, template_id=template_id
        )
    except Exception as e:
        raise_http_error(e)


@router.post("/imports/validate", response_model=ValidationResultResponse)
async def validate_import_endpoint(
    file: UploadFile = File(...),
    target_table: str = Form(...),
    mapping_json: str = Form(...),
):
    """Validate an uploaded file against the target table's rules without importing it."""
    content = await read_upload(file)
    mapping = parse_mapping_json(mapping_json)
    try:
        result = await orchestrator.validate_upload(
            content, filename=file.filename, target_table=target_table, field_mapping=mapping
        )
    except Exception as e:
        raise_http_error(e)
    return result.to_dict()


@router.post("/imports", response_model=ImportSubmissionResponse)
async def create_import_endpoint(
    file: UploadFile = File(...),
    target_table: str = Form(...),
    mapping_json: str = Form(...),
    user_id: str = Form(...),
    store: DestinationStore = Depends(get_destination_store),
    scheduler: JobQueueScheduler = Depends(get_scheduler),
):
    """
    Import an uploaded file into a target table.

    Small files are written before the response is returned (mode
    ``direct``). Larger files are queued (mode ``queued``); poll
    ``/import-jobs/{id}`` or ``/tasks/{task_id}`` for progress.
    """
    if not user_id.strip():
        raise HTTPException(status_code=400, detail="user_id is required")

    content = await read_upload(file)
    mapping = parse_mapping_json(mapping_json)
    logger.info("Received import of '%s' into '%s' for %s", file.filename, target_table, user_id)
    try:
        submission = await orchestrator.execute_import(
            content,
            filename=file.filename,
            target_table=target_table,
            field_mapping=mapping,
            user_id=user_id,
            store=store,
            scheduler=scheduler,
        )
    except Exception as e:
        raise_http_error(e)

    return ImportSubmissionResponse(success=True, **submission.to_dict())
