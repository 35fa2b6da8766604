"""
Batch processor: maps rows and commits them to the destination in
fixed-size batches.

Batch ``i`` is fully resolved (written or recorded as failed) before batch
``i + 1`` starts. A rejected batch is counted as failed and recorded, and the
job moves on; only errors outside the batch boundary (missing job, missing
destination table, lost ownership) fail the whole job. Batches that
succeeded before such an error are kept.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from import_hub.core.config import settings
from import_hub.db.session import run_db
from import_hub.domain.imports import jobs
from import_hub.domain.imports.destination import DestinationStore
from import_hub.domain.imports.errors import JobFatalError
from import_hub.domain.imports.mapper import FieldMapping, map_rows

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


@dataclass
class BatchOutcome:
    job_id: str
    total: int
    processed: int = 0
    successful: int = 0
    failed: int = 0
    failed_batches: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "total": self.total,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "failed_batches": self.failed_batches,
        }


def partition(rows: Sequence[Dict[str, Any]], batch_size: int) -> List[Sequence[Dict[str, Any]]]:
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [rows[start:start + batch_size] for start in range(0, len(rows), batch_size)]


class BatchProcessor:
    """Runs one import job's rows through the destination store."""

    def __init__(
        self,
        store: DestinationStore,
        *,
        batch_size: Optional[int] = None,
        pause_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.batch_size = batch_size or settings.import_batch_size
        self.pause_seconds = pause_seconds
        self._sleep = sleep

    async def run(
        self,
        job_id: str,
        rows: Sequence[Mapping[str, Any]],
        mapping: FieldMapping,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchOutcome:
        """
        Process a pending job to completion.

        Raises:
            ImportJobNotFoundError / InvalidJobTransitionError: the job does not
                exist or is not pending; it is left untouched.
            JobFatalError: the job was marked failed by an error outside the
                per-batch boundary.
        """
        job = await run_db(jobs.start_import_job, job_id)
        outcome = BatchOutcome(job_id=job_id, total=job["total_records"])

        try:
            await self._process(job, rows, mapping, outcome, on_progress)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Import job %s failed after %d records: %s", job_id, outcome.processed, message)
            await run_db(jobs.fail_import_job, job_id, message)
            raise JobFatalError(job_id, message) from exc

        await run_db(
            jobs.complete_import_job,
            job_id,
            processed=outcome.processed,
            successful=outcome.successful,
            failed=outcome.failed,
        )
        logger.info(
            "Import job %s completed: %d successful, %d failed (%d failed batches)",
            job_id,
            outcome.successful,
            outcome.failed,
            outcome.failed_batches,
        )
        return outcome

    async def _process(
        self,
        job: Dict[str, Any],
        rows: Sequence[Mapping[str, Any]],
        mapping: FieldMapping,
        outcome: BatchOutcome,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        job_id = job["id"]
        target_table = job["target_table"]
        if len(rows) != outcome.total:
            raise ValueError(f"Job expects {outcome.total} records but {len(rows)} rows were supplied")

        mapped = map_rows(rows, mapping)
        await self.store.ensure_table(target_table)

        batches = partition(mapped, self.batch_size)
        for index, batch in enumerate(batches):
            start_row = index * self.batch_size
            try:
                await self.store.insert_rows(target_table, list(batch))
                outcome.successful += len(batch)
            except Exception as exc:
                outcome.failed += len(batch)
                outcome.failed_batches += 1
                logger.warning(
                    "Import job %s: batch %d/%d (rows %d-%d) failed: %s",
                    job_id,
                    index + 1,
                    len(batches),
                    start_row + 1,
                    start_row + len(batch),
                    exc,
                )
                await self._record_batch_error(job_id, start_row, len(batch), str(exc))

            outcome.processed += len(batch)
            await run_db(
                jobs.update_job_progress,
                job_id,
                processed=outcome.processed,
                successful=outcome.successful,
                failed=outcome.failed,
            )
            if on_progress is not None:
                await on_progress(outcome.processed, outcome.total)

            if self.pause_seconds and index < len(batches) - 1:
                await self._sleep(self.pause_seconds)

    async def _record_batch_error(self, job_id: str, start_row: int, batch_size: int, message: str) -> None:
        # Best effort: a failure to log must not change the job's outcome.
        try:
            await run_db(
                jobs.record_batch_error, job_id, start_row=start_row, batch_size=batch_size, message=message
            )
        except Exception as log_error:
            logger.error("Could not record batch error for job %s: %s", job_id, log_error)
