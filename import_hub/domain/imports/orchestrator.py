"""
Import orchestration: parse -> map -> validate -> create job -> process.

Datasets below the synchronous threshold are written by the batch
processor within the caller's request; larger ones are handed to the job
queue and the caller polls the job (or task) for progress.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from import_hub.core.config import settings
from import_hub.db.session import run_db
from import_hub.domain.imports import jobs, templates
from import_hub.domain.imports.batch import BatchOutcome, BatchProcessor
from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.destination import DestinationStore, ensure_safe_table_name
from import_hub.domain.imports.mapper import FieldMapping, suggest_field_mapping
from import_hub.domain.imports.parser import detect_file_type, parse_file
from import_hub.domain.imports.tables import get_known_fields, get_rule_set
from import_hub.domain.imports.validation import ValidationResult, validate_dataset_async
from import_hub.domain.queue.scheduler import JobQueueScheduler
from import_hub.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

MODE_DIRECT = "direct"
MODE_QUEUED = "queued"


@dataclass
class ImportSubmission:
    job: Dict[str, Any]
    validation: ValidationResult
    mode: str
    task: Optional[Dict[str, Any]] = None
    outcome: Optional[BatchOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "validation": self.validation.to_dict(),
            "mode": self.mode,
            "task_id": self.task["id"] if self.task else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }


def preview_import(
    file_content: bytes,
    *,
    filename: str,
    target_table: str,
    template_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Parse an upload and propose a mapping for it.

    A saved template, when given and found, pre-fills the mapping;
    otherwise the mapping is suggested from the target table's known fields.
    """
    target_table = ensure_safe_table_name(target_table)
    dataset = parse_file(file_content, filename=filename)

    mapping = None
    source = "suggested"
    if template_id:
        mapping = templates.mapping_from_template(template_id, dataset.headers)
        if mapping is not None:
            source = "template"
        else:
            logger.warning("Template %s not found; falling back to suggested mapping", template_id)
    if mapping is None:
        mapping = suggest_field_mapping(dataset.headers, get_known_fields(target_table))

    return {
        **dataset.to_dict(),
        "target_table": target_table,
        "suggested_mapping": mapping.to_dict(),
        "mapping_source": source,
    }


async def validate_upload(
    file_content: bytes,
    *,
    filename: str,
    target_table: str,
    field_mapping: Dict[str, Optional[str]],
) -> ValidationResult:
    dataset = parse_file(file_content, filename=filename)
    return await _validate(dataset, ensure_safe_table_name(target_table), FieldMapping.from_dict(field_mapping))


async def _validate(dataset: ParsedDataset, target_table: str, mapping: FieldMapping) -> ValidationResult:
    result = await validate_dataset_async(dataset, mapping, get_rule_set(target_table))
    logger.info(
        "Validated %d rows for %s: %d valid, %d errors, %d warnings",
        result.total_rows,
        target_table,
        result.valid_rows,
        len(result.errors),
        len(result.warnings),
    )
    return result


async def execute_import(
    file_content: bytes,
    *,
    filename: str,
    target_table: str,
    field_mapping: Dict[str, Optional[str]],
    user_id: str,
    store: DestinationStore,
    scheduler: JobQueueScheduler,
    sync_threshold: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> ImportSubmission:
    """
    Run one import end to end.

    Raises:
        ParseError: the file could not be parsed; no job is created.
        ReservedTableError: the target is a system table; no job is created.
        JobFatalError: the direct path failed outside the batch boundary;
            the job is left failed.
    """
    target_table = ensure_safe_table_name(target_table)
    file_type = detect_file_type(filename)
    dataset = parse_file(file_content, file_type, filename=filename)
    mapping = FieldMapping.from_dict(field_mapping)
    rules = get_rule_set(target_table)

    validation = await _validate(dataset, target_table, mapping)

    job = await run_db(
        jobs.create_import_job,
        user_id=user_id,
        file_name=filename,
        file_type=file_type,
        file_size=len(file_content),
        target_table=target_table,
        total_records=dataset.total_rows,
        field_mapping=mapping.to_dict(),
        validation_rules=rules.to_snapshot(),
        error_summary={
            "validation_errors": len(validation.errors),
            "validation_warnings": len(validation.warnings),
        },
        warning_records=validation.warning_rows,
    )
    await _record_issues(job["id"], validation)

    threshold = settings.import_sync_threshold if sync_threshold is None else sync_threshold
    if dataset.total_rows < threshold:
        processor = BatchProcessor(store, batch_size=batch_size)
        outcome = await processor.run(job["id"], dataset.rows, mapping)
        job = await run_db(jobs.require_import_job, job["id"])
        return ImportSubmission(job=job, validation=validation, mode=MODE_DIRECT, outcome=outcome)

    task = await scheduler.submit_import(
        import_job_id=job["id"],
        rows=make_json_safe(dataset.rows),
        field_mapping=mapping.to_dict(),
        user_id=user_id,
    )
    logger.info("Import job %s queued as task %s (%s priority)", job["id"], task["id"], task["priority"])
    return ImportSubmission(job=job, validation=validation, mode=MODE_QUEUED, task=task)


async def _record_issues(job_id: str, validation: ValidationResult) -> None:
    # Best effort: losing the issue log must not fail the import.
    try:
        stored = await run_db(jobs.record_validation_issues, job_id, validation.errors + validation.warnings)
        if stored:
            logger.info("Recorded %d validation issues for import job %s", stored, job_id)
    except Exception as exc:
        logger.error("Could not record validation issues for import job %s: %s", job_id, exc)
