"""
Processors for the queue's task variants.

Each processor handles exactly one task type and exposes
``process(task) -> result``; the scheduler looks processors up in the
registry built by ``build_processor_registry`` at startup.
"""
import logging
from io import StringIO
from typing import Any, Dict, Mapping, Optional, Protocol

import pandas as pd

from import_hub.core.config import settings
from import_hub.db.session import run_db
from import_hub.domain.imports import jobs
from import_hub.domain.imports.batch import BatchProcessor
from import_hub.domain.imports.dataset import ParsedDataset
from import_hub.domain.imports.destination import DestinationStore
from import_hub.domain.imports.mapper import FieldMapping
from import_hub.domain.imports.tables import get_rule_set
from import_hub.domain.imports.validation import validate_dataset_async
from import_hub.domain.queue import tasks
from import_hub.domain.queue.payloads import (
    ExportTaskPayload,
    ImportTaskPayload,
    TaskType,
    ValidationTaskPayload,
    parse_payload,
)

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "row_number",
    "field_name",
    "error_type",
    "error_message",
    "raw_value",
    "severity",
    "suggested_fix",
]


class TaskProcessor(Protocol):
    async def process(self, task: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        ...


class ImportTaskProcessor:
    """Runs the batch processor for a queued import job and mirrors its progress on the task."""

    def __init__(self, store: DestinationStore, *, batch_size: Optional[int] = None, pause_seconds: Optional[float] = None):
        self.batch_processor = BatchProcessor(
            store,
            batch_size=batch_size,
            pause_seconds=settings.import_batch_pause_seconds if pause_seconds is None else pause_seconds,
        )

    async def process(self, task: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        payload = parse_payload(task["payload"])
        if not isinstance(payload, ImportTaskPayload):
            raise TypeError(f"Import processor received a '{payload.type}' payload")

        task_id = task["id"]

        async def on_progress(processed: int, total: int) -> None:
            progress = round(processed / total * 100) if total else 100
            await run_db(tasks.update_task_progress, task_id, progress)

        outcome = await self.batch_processor.run(
            payload.import_job_id,
            payload.rows,
            FieldMapping.from_dict(payload.field_mapping),
            on_progress=on_progress,
        )
        return outcome.to_dict()


class ValidationTaskProcessor:
    """Validates a dataset off the request path; the result is stored on the task."""

    def __init__(self, *, yield_every: Optional[int] = None):
        self.yield_every = yield_every

    async def process(self, task: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        payload = parse_payload(task["payload"])
        if not isinstance(payload, ValidationTaskPayload):
            raise TypeError(f"Validation processor received a '{payload.type}' payload")

        dataset = ParsedDataset(headers=payload.headers, rows=payload.rows)
        result = await validate_dataset_async(
            dataset,
            FieldMapping.from_dict(payload.field_mapping),
            get_rule_set(payload.target_table),
            yield_every=self.yield_every,
        )
        logger.info(
            "Validation task %s: %d errors, %d warnings over %d rows",
            task["id"],
            len(result.errors),
            len(result.warnings),
            result.total_rows,
        )
        return result.to_dict()


class ExportTaskProcessor:
    """Renders an import job's error records as a CSV report."""

    async def process(self, task: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        payload = parse_payload(task["payload"])
        if not isinstance(payload, ExportTaskPayload):
            raise TypeError(f"Export processor received a '{payload.type}' payload")

        job = await run_db(jobs.require_import_job, payload.import_job_id)
        records = await run_db(jobs.list_import_errors, payload.import_job_id)

        df = pd.DataFrame(records, columns=EXPORT_COLUMNS)
        buffer = StringIO()
        df.to_csv(buffer, index=False)
        return {
            "format": "csv",
            "file_name": f"errors_{job['file_name']}.csv",
            "import_job_id": job["id"],
            "rows": len(df),
            "content": buffer.getvalue(),
        }


def build_processor_registry(
    store: DestinationStore,
    *,
    batch_size: Optional[int] = None,
    pause_seconds: Optional[float] = None,
) -> Dict[TaskType, TaskProcessor]:
    return {
        TaskType.IMPORT: ImportTaskProcessor(store, batch_size=batch_size, pause_seconds=pause_seconds),
        TaskType.VALIDATION: ValidationTaskProcessor(),
        TaskType.EXPORT: ExportTaskProcessor(),
    }
