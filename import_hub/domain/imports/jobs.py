"""
Persistent tracking for import jobs and the issues captured for them.

Status changes are guarded updates (``WHERE status = :expected``) so that
exactly one processor can take ownership of a job:

    pending -> processing -> completed | failed
    pending -> cancelled
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update

from import_hub.db.models import ImportErrorRecord, ImportJob, _utcnow
from import_hub.db.session import get_session_local
from import_hub.domain.imports.errors import ImportJobNotFoundError, InvalidJobTransitionError
from import_hub.domain.imports.validation import ValidationIssue

logger = logging.getLogger(__name__)

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"

ALLOWED_TRANSITIONS = {
    (JOB_PENDING, JOB_PROCESSING),
    (JOB_PROCESSING, JOB_COMPLETED),
    (JOB_PROCESSING, JOB_FAILED),
    (JOB_PENDING, JOB_CANCELLED),
}


def _row_to_job(job: ImportJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "user_id": job.user_id,
        "file_name": job.file_name,
        "file_type": job.file_type,
        "file_size": job.file_size,
        "target_table": job.target_table,
        "status": job.status,
        "total_records": job.total_records,
        "processed_records": job.processed_records,
        "successful_records": job.successful_records,
        "failed_records": job.failed_records,
        "warning_records": job.warning_records,
        "field_mapping": job.field_mapping,
        "validation_rules": job.validation_rules,
        "error_summary": job.error_summary,
        "error_message": job.error_message,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }


def _row_to_error(record: ImportErrorRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "import_job_id": record.import_job_id,
        "row_number": record.row_number,
        "field_name": record.field_name,
        "error_type": record.error_type,
        "error_message": record.error_message,
        "raw_value": record.raw_value,
        "severity": record.severity,
        "suggested_fix": record.suggested_fix,
        "created_at": record.created_at,
    }


def create_import_job(
    *,
    user_id: str,
    file_name: str,
    file_type: str,
    file_size: int,
    target_table: str,
    total_records: int,
    field_mapping: Dict[str, Optional[str]],
    validation_rules: Optional[Dict[str, Any]] = None,
    error_summary: Optional[Dict[str, Any]] = None,
    warning_records: int = 0,
) -> Dict[str, Any]:
    """Create and persist a new pending import job."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        job = ImportJob(
            user_id=user_id,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            target_table=target_table,
            status=JOB_PENDING,
            total_records=total_records,
            warning_records=warning_records,
            field_mapping=dict(field_mapping),
            validation_rules=validation_rules,
            error_summary=error_summary or {},
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info(
            "Created import job %s: %s -> %s (%d records)", job.id, file_name, target_table, total_records
        )
        return _row_to_job(job)


def get_import_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Fetch a single job by ID."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        job = db.get(ImportJob, job_id)
        return _row_to_job(job) if job else None


def require_import_job(job_id: str) -> Dict[str, Any]:
    job = get_import_job(job_id)
    if job is None:
        raise ImportJobNotFoundError(job_id)
    return job


def list_import_jobs(
    *,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """List jobs newest first, optionally filtered by owner."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        query = select(ImportJob)
        count_query = select(func.count(ImportJob.id))
        if user_id:
            query = query.where(ImportJob.user_id == user_id)
            count_query = count_query.where(ImportJob.user_id == user_id)

        jobs = db.scalars(
            query.order_by(ImportJob.created_at.desc()).limit(limit).offset(offset)
        ).all()
        total = db.scalar(count_query) or 0
        return [_row_to_job(job) for job in jobs], total


def transition_import_job(job_id: str, *, expected: str, status: str, **changes: Any) -> Dict[str, Any]:
    """
    Move a job from ``expected`` to ``status`` and apply ``changes`` atomically.

    Raises:
        InvalidJobTransitionError: if the transition is not allowed or the job
            is no longer in the expected status.
        ImportJobNotFoundError: if the job does not exist.
    """
    if (expected, status) not in ALLOWED_TRANSITIONS:
        raise InvalidJobTransitionError(job_id, expected, status)

    SessionLocal = get_session_local()
    with SessionLocal() as db:
        result = db.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == expected)
            .values(status=status, updated_at=_utcnow(), **changes)
        )
        db.commit()
        if result.rowcount != 1:
            job = db.get(ImportJob, job_id)
            if job is None:
                raise ImportJobNotFoundError(job_id)
            raise InvalidJobTransitionError(job_id, expected, status, job.status)

        job = db.get(ImportJob, job_id)
        db.refresh(job)
        logger.info("Import job %s: %s -> %s", job_id, expected, status)
        return _row_to_job(job)


def start_import_job(job_id: str) -> Dict[str, Any]:
    """Claim a pending job for processing."""
    return transition_import_job(job_id, expected=JOB_PENDING, status=JOB_PROCESSING, started_at=_utcnow())


def update_job_progress(job_id: str, *, processed: int, successful: int, failed: int) -> Dict[str, Any]:
    """Persist counters for a job that is being processed (visible to pollers)."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        job = db.get(ImportJob, job_id)
        if job is None:
            raise ImportJobNotFoundError(job_id)
        _check_counters(job, processed, successful, failed)
        if job.status != JOB_PROCESSING:
            raise InvalidJobTransitionError(job_id, JOB_PROCESSING, JOB_PROCESSING, job.status)

        job.processed_records = processed
        job.successful_records = successful
        job.failed_records = failed
        db.commit()
        db.refresh(job)
        return _row_to_job(job)


def _check_counters(job: ImportJob, processed: int, successful: int, failed: int) -> None:
    if not 0 <= processed <= job.total_records:
        raise ValueError(
            f"processed_records={processed} outside [0, {job.total_records}] for job {job.id}"
        )
    if successful + failed != processed:
        raise ValueError(
            f"successful ({successful}) + failed ({failed}) != processed ({processed}) for job {job.id}"
        )


def complete_import_job(job_id: str, *, processed: int, successful: int, failed: int) -> Dict[str, Any]:
    return transition_import_job(
        job_id,
        expected=JOB_PROCESSING,
        status=JOB_COMPLETED,
        processed_records=processed,
        successful_records=successful,
        failed_records=failed,
        completed_at=_utcnow(),
    )


def fail_import_job(job_id: str, error_message: str) -> Dict[str, Any]:
    """Mark a job being processed as failed, keeping the counters reached so far."""
    job = require_import_job(job_id)
    error_summary = dict(job.get("error_summary") or {})
    error_summary["error"] = error_message
    return transition_import_job(
        job_id,
        expected=JOB_PROCESSING,
        status=JOB_FAILED,
        error_message=error_message,
        error_summary=error_summary,
        completed_at=_utcnow(),
    )


def cancel_import_job(job_id: str) -> Dict[str, Any]:
    """Cancel a job that has not started yet."""
    return transition_import_job(job_id, expected=JOB_PENDING, status=JOB_CANCELLED, completed_at=_utcnow())


def record_validation_issues(job_id: str, issues: Iterable[ValidationIssue]) -> int:
    """Persist validation issues as import error records; returns the number stored."""
    records = [
        ImportErrorRecord(
            import_job_id=job_id,
            row_number=issue.row,
            field_name=issue.field,
            error_type="validation",
            error_message=issue.message,
            raw_value=None if issue.value is None else str(issue.value),
            severity=issue.severity,
        )
        for issue in issues
    ]
    if not records:
        return 0

    SessionLocal = get_session_local()
    with SessionLocal() as db:
        db.add_all(records)
        db.commit()
    return len(records)


def record_batch_error(job_id: str, *, start_row: int, batch_size: int, message: str) -> None:
    """Store one summarizing record for a failed batch (``start_row`` is 0-based)."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        db.add(
            ImportErrorRecord(
                import_job_id=job_id,
                row_number=start_row + 1,
                field_name=None,
                error_type="batch_processing",
                error_message=(
                    f"Error processing batch (rows {start_row + 1}-{start_row + batch_size}): {message}"
                ),
                severity="error",
            )
        )
        db.commit()


def list_import_errors(job_id: str) -> List[Dict[str, Any]]:
    """Fetch a job's error records ordered by row number."""
    SessionLocal = get_session_local()
    with SessionLocal() as db:
        records = db.scalars(
            select(ImportErrorRecord)
            .where(ImportErrorRecord.import_job_id == job_id)
            .order_by(ImportErrorRecord.row_number.asc(), ImportErrorRecord.id.asc())
        ).all()
        return [_row_to_error(record) for record in records]
