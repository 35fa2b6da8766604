"""
Persistence for queue tasks (the ``job_queue`` table).

    pending -> processing -> completed | failed

There is no automatic retry: a failed task stays failed and the work has
to be submitted again. Claiming a task is a guarded update, so a task is
dispatched at most once even when polling cycles overlap.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update

from import_hub.db.models import QueueTask
from import_hub.db.session import get_session_local
from import_hub.domain.queue.payloads import PRIORITY_RANK, TaskPriority, TaskType, parse_payload

logger = logging.getLogger(__name__)

TASK_PENDING = "pending"
TASK_PROCESSING = "processing"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"

TASK_STATUSES = (TASK_PENDING, TASK_PROCESSING, TASK_COMPLETED, TASK_FAILED)


def _row_to_task(task: QueueTask) -> Dict[str, Any]:
    return {
        "id": task.id,
        "type": task.type,
        "status": task.status,
        "priority": task.priority,
        "payload": task.payload,
        "result": task.result,
        "user_id": task.user_id,
        "progress": task.progress,
        "error_message": task.error_message,
        "created_at": task.created_at,
        "started_at": task.started_at,
        "completed_at": task.completed_at,
    }


def create_task(
    *,
    task_type: TaskType,
    priority: TaskPriority,
    payload: Dict[str, Any],
    user_id: str,
    now: datetime,
) -> Dict[str, Any]:
    """Validate the payload against its variant and persist a pending task."""
    task_type = TaskType(task_type)
    priority = TaskPriority(priority)
    parsed = parse_payload({**payload, "type": task_type.value})

    SessionLocal = get_session_local()
    with SessionLocal() as db:
        task = QueueTask(
            type=task_type.value,
            status=TASK_PENDING,
            priority=priority.value,
            priority_rank=PRIORITY_RANK[priority],
            payload=parsed.model_dump(mode="json"),
            user_id=user_id,
            progress=0,
            created_at=now,
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        logger.info("Queued %s task %s (priority=%s)", task.type, task.id, task.priority)
        return _row_to_task(task)


def get_task(task_id: str) -> Optional[Dict[str, Any]]:
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        task = db.get(QueueTask, task_id)
        return _row_to_task(task) if task else None


def list_user_tasks(user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        tasks = db.scalars(
            select(QueueTask)
            .where(QueueTask.user_id == user_id)
            .order_by(QueueTask.created_at.desc())
            .limit(limit)
        ).all()
        return [_row_to_task(task) for task in tasks]


def select_pending_tasks(limit: int) -> List[Dict[str, Any]]:
    """Pending tasks by priority band (high first), oldest first within a band."""
    if limit <= 0:
        return []
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        tasks = db.scalars(
            select(QueueTask)
            .where(QueueTask.status == TASK_PENDING)
            .order_by(QueueTask.priority_rank.desc(), QueueTask.created_at.asc(), QueueTask.id.asc())
            .limit(limit)
        ).all()
        return [_row_to_task(task) for task in tasks]


def claim_task(task_id: str, now: datetime) -> bool:
    """Atomically move a task from pending to processing; False if someone else got it."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        result = db.execute(
            update(QueueTask)
            .where(QueueTask.id == task_id, QueueTask.status == TASK_PENDING)
            .values(status=TASK_PROCESSING, started_at=now)
        )
        db.commit()
        return result.rowcount == 1


def update_task_progress(task_id: str, progress: int) -> None:
    progress = max(0, min(100, int(progress)))
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        db.execute(
            update(QueueTask)
            .where(QueueTask.id == task_id, QueueTask.status == TASK_PROCESSING)
            .values(progress=progress)
        )
        db.commit()


def _finish_task(task_id: str, status: str, now: datetime, **changes: Any) -> bool:
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        result = db.execute(
            update(QueueTask)
            .where(QueueTask.id == task_id, QueueTask.status == TASK_PROCESSING)
            .values(status=status, completed_at=now, **changes)
        )
        db.commit()
        if result.rowcount != 1:
            logger.warning("Queue task %s was not processing; could not mark it %s", task_id, status)
            return False
        return True


def complete_task(task_id: str, now: datetime, result: Optional[Dict[str, Any]] = None) -> bool:
    return _finish_task(task_id, TASK_COMPLETED, now, result=result, progress=100)


def fail_task(task_id: str, now: datetime, error_message: str) -> bool:
    return _finish_task(task_id, TASK_FAILED, now, error_message=error_message)


def get_queue_stats(now: datetime, window_hours: int = 24) -> Dict[str, int]:
    """Per-status counts for tasks created within the window."""
    stats = {status: 0 for status in TASK_STATUSES}
    cutoff = now - timedelta(hours=window_hours)
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        rows = db.execute(
            select(QueueTask.status, func.count(QueueTask.id))
            .where(QueueTask.created_at >= cutoff)
            .group_by(QueueTask.status)
        ).all()
    for status, count in rows:
        stats[status] = count
    return stats


def clear_finished_tasks(now: datetime, older_than_days: int = 7) -> int:
    """Delete completed/failed tasks that finished before the retention window."""
    cutoff = now - timedelta(days=older_than_days)
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        result = db.execute(
            delete(QueueTask).where(
                QueueTask.status.in_((TASK_COMPLETED, TASK_FAILED)),
                QueueTask.completed_at < cutoff,
            )
        )
        db.commit()
        removed = result.rowcount or 0
    logger.info("Removed %d finished queue tasks older than %d days", removed, older_than_days)
    return removed
