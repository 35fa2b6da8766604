"""
Endpoints for tracking import job progress.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException

from import_hub.api.dependencies import raise_http_error
from import_hub.api.schemas.shared import ImportErrorListResponse, ImportJobListResponse, ImportJobResponse
from import_hub.domain.imports.jobs import cancel_import_job, get_import_job, list_import_errors, list_import_jobs

router = APIRouter(tags=["import-jobs"])


@router.get("/import-jobs/{job_id}", response_model=ImportJobResponse)
async def get_import_job_endpoint(job_id: str):
    job = get_import_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return ImportJobResponse(success=True, job=job)


@router.get("/import-jobs", response_model=ImportJobListResponse)
async def list_import_jobs_endpoint(
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
):
    jobs, total = list_import_jobs(user_id=user_id, limit=limit, offset=offset)
    return ImportJobListResponse(
        success=True,
        jobs=jobs,
        total_count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/import-jobs/{job_id}/errors", response_model=ImportErrorListResponse)
async def list_import_job_errors_endpoint(job_id: str):
    if not get_import_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return ImportErrorListResponse(success=True, job_id=job_id, errors=list_import_errors(job_id))


@router.post("/import-jobs/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_import_job_endpoint(job_id: str):
    """Cancel a job that has not started processing yet."""
    try:
        job = cancel_import_job(job_id)
    except Exception as e:
        raise_http_error(e)
    return ImportJobResponse(success=True, job=job)
