"""
Queue task endpoints: progress polling, per-user listing, statistics,
retention cleanup and report exports.
"""
from fastapi import APIRouter, Depends

from import_hub.api.dependencies import get_scheduler, raise_http_error
from import_hub.api.schemas.shared import (
    ExportRequest,
    QueueCleanupRequest,
    QueueCleanupResponse,
    QueueStatsResponse,
    QueueTaskInfo,
    QueueTaskListResponse,
)
from import_hub.db.session import run_db
from import_hub.domain.imports.jobs import require_import_job
from import_hub.domain.queue.scheduler import JobQueueScheduler

router = APIRouter(tags=["tasks"])


@router.get("/tasks/stats", response_model=QueueStatsResponse)
async def queue_stats_endpoint(scheduler: JobQueueScheduler = Depends(get_scheduler)):
    """Task counts per status over the last 24 hours."""
    return await scheduler.stats()


@router.get("/tasks", response_model=QueueTaskListResponse)
async def list_tasks_endpoint(
    user_id: str,
    limit: int = 50,
    scheduler: JobQueueScheduler = Depends(get_scheduler),
):
    tasks = await scheduler.list_user_tasks(user_id, limit)
    return QueueTaskListResponse(success=True, tasks=tasks)


@router.get("/tasks/{task_id}", response_model=QueueTaskInfo)
async def get_task_endpoint(task_id: str, scheduler: JobQueueScheduler = Depends(get_scheduler)):
    try:
        return await scheduler.get_task(task_id)
    except Exception as e:
        raise_http_error(e)


@router.post("/tasks/cleanup", response_model=QueueCleanupResponse)
async def cleanup_tasks_endpoint(
    request: QueueCleanupRequest,
    scheduler: JobQueueScheduler = Depends(get_scheduler),
):
    removed = await scheduler.clear_finished(request.older_than_days)
    return QueueCleanupResponse(success=True, removed=removed)


@router.post("/tasks/export", response_model=QueueTaskInfo)
async def export_errors_endpoint(
    request: ExportRequest,
    scheduler: JobQueueScheduler = Depends(get_scheduler),
):
    """Queue a CSV report of an import job's error records; poll the task for the result."""
    try:
        await run_db(require_import_job, request.import_job_id)
    except Exception as e:
        raise_http_error(e)
    return await scheduler.submit_export(import_job_id=request.import_job_id, user_id=request.user_id)
