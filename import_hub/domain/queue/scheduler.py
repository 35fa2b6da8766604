"""
Polling scheduler for queued tasks.

Every ``poll_interval`` seconds the scheduler selects pending tasks (high
priority first, oldest first within a band), claims each one with a
guarded status update and dispatches it without waiting for the others.
At most ``dispatch_limit`` tasks are in flight at once. A claimed task
ends completed or failed; there is no automatic retry.

The scheduler is an explicit object: create it at startup, pass it to
whoever submits work, and stop it on shutdown.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from import_hub.core.config import settings
from import_hub.db.models import _utcnow
from import_hub.db.session import run_db
from import_hub.domain.queue import tasks
from import_hub.domain.queue.errors import QueueTaskNotFoundError, UnknownTaskTypeError
from import_hub.domain.queue.payloads import TaskPriority, TaskType
from import_hub.domain.queue.processors import TaskProcessor
from import_hub.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


class JobQueueScheduler:
    def __init__(
        self,
        processors: Mapping[Any, TaskProcessor],
        *,
        poll_interval: Optional[float] = None,
        dispatch_limit: Optional[int] = None,
        high_priority_threshold: Optional[int] = None,
        start_on_submit: bool = True,
        clock: Clock = _utcnow,
        sleep: Sleep = asyncio.sleep,
    ):
        self._processors: Dict[str, TaskProcessor] = {
            TaskType(task_type).value: processor for task_type, processor in processors.items()
        }
        self.poll_interval = settings.queue_poll_interval_seconds if poll_interval is None else poll_interval
        self.dispatch_limit = dispatch_limit or settings.queue_dispatch_limit
        self.high_priority_threshold = (
            settings.queue_high_priority_threshold if high_priority_threshold is None else high_priority_threshold
        )
        self.start_on_submit = start_on_submit
        self._clock = clock
        self._sleep = sleep
        self._poller: Optional[asyncio.Task] = None
        self._current_tick: Optional[asyncio.Task] = None
        self._stopping = False
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        return self._poller is not None and not self._poller.done()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def submit(
        self,
        task_type: TaskType,
        payload: Dict[str, Any],
        *,
        user_id: str,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Dict[str, Any]:
        """Persist a pending task and make sure the poller is running."""
        task = await run_db(
            tasks.create_task,
            task_type=task_type,
            priority=priority,
            payload=payload,
            user_id=user_id,
            now=self._clock(),
        )
        if self.start_on_submit:
            self.start()
        return task

    async def submit_import(
        self,
        *,
        import_job_id: str,
        rows: List[Dict[str, Any]],
        field_mapping: Dict[str, Optional[str]],
        user_id: str,
    ) -> Dict[str, Any]:
        priority = TaskPriority.HIGH if len(rows) > self.high_priority_threshold else TaskPriority.MEDIUM
        return await self.submit(
            TaskType.IMPORT,
            {"import_job_id": import_job_id, "rows": rows, "field_mapping": field_mapping},
            user_id=user_id,
            priority=priority,
        )

    async def submit_validation(
        self,
        *,
        target_table: str,
        headers: List[str],
        rows: List[Dict[str, Any]],
        field_mapping: Dict[str, Optional[str]],
        user_id: str,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Dict[str, Any]:
        return await self.submit(
            TaskType.VALIDATION,
            {"target_table": target_table, "headers": headers, "rows": rows, "field_mapping": field_mapping},
            user_id=user_id,
            priority=priority,
        )

    async def submit_export(
        self, *, import_job_id: str, user_id: str, priority: TaskPriority = TaskPriority.LOW
    ) -> Dict[str, Any]:
        return await self.submit(
            TaskType.EXPORT, {"import_job_id": import_job_id}, user_id=user_id, priority=priority
        )

    def start(self) -> None:
        """Start the poller if it is idle (must be called from a running event loop)."""
        if self.is_running:
            return
        self._poller = asyncio.get_running_loop().create_task(self._poll_loop())

    async def stop(self, *, wait: bool = True) -> None:
        """
        Stop polling; with ``wait`` also let already-dispatched tasks finish.

        A tick caught mid-claim is not cancelled: the claim in progress is
        dispatched and the remaining selected tasks stay pending.
        """
        self._stopping = True
        try:
            poller, self._poller = self._poller, None
            if poller is not None and not poller.done():
                poller.cancel()
                try:
                    await poller
                except asyncio.CancelledError:
                    pass
            current_tick, self._current_tick = self._current_tick, None
            if current_tick is not None:
                await asyncio.gather(current_tick, return_exceptions=True)
        finally:
            self._stopping = False
        if wait:
            await self.wait_for_inflight()

    async def wait_for_inflight(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def _poll_loop(self) -> None:
        logger.info(
            "Job queue poller started (interval=%ss, dispatch_limit=%d)", self.poll_interval, self.dispatch_limit
        )
        try:
            while True:
                # Shielded so a claimed task always gets a runner, even during stop().
                self._current_tick = asyncio.get_running_loop().create_task(self.tick())
                try:
                    await asyncio.shield(self._current_tick)
                except Exception:
                    logger.exception("Job queue poll failed")
                self._current_tick = None
                await self._sleep(self.poll_interval)
        finally:
            logger.info("Job queue poller stopped")

    async def tick(self) -> List[str]:
        """Run one polling cycle; returns the IDs of the tasks dispatched."""
        capacity = self.dispatch_limit - len(self._inflight)
        if capacity <= 0:
            return []

        pending = await run_db(tasks.select_pending_tasks, capacity)
        dispatched = []
        for task in pending:
            if self._stopping:
                break
            claimed = await run_db(tasks.claim_task, task["id"], self._clock())
            if not claimed:
                logger.debug("Queue task %s was claimed elsewhere; skipping", task["id"])
                continue

            task = {**task, "status": tasks.TASK_PROCESSING}
            runner = asyncio.get_running_loop().create_task(self._run_task(task))
            self._inflight[task["id"]] = runner
            runner.add_done_callback(lambda _runner, task_id=task["id"]: self._inflight.pop(task_id, None))
            dispatched.append(task["id"])
            logger.info("Dispatched %s task %s (priority=%s)", task["type"], task["id"], task["priority"])
        return dispatched

    async def _run_task(self, task: Dict[str, Any]) -> None:
        task_id = task["id"]
        try:
            processor = self._processors.get(task["type"])
            if processor is None:
                raise UnknownTaskTypeError(task["type"])
            result = await processor.process(task)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Queue task %s failed: %s", task_id, message)
            await self._finish(tasks.fail_task, task_id, message)
            return

        await self._finish(tasks.complete_task, task_id, make_json_safe(result))
        logger.info("Queue task %s completed", task_id)

    async def _finish(self, finisher: Callable[..., bool], task_id: str, value: Any) -> None:
        # Nobody awaits dispatched runners, so a failed status write is logged here.
        try:
            await run_db(finisher, task_id, self._clock(), value)
        except Exception:
            logger.exception("Could not record the outcome of queue task %s", task_id)

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        task = await run_db(tasks.get_task, task_id)
        if task is None:
            raise QueueTaskNotFoundError(task_id)
        return task

    async def list_user_tasks(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return await run_db(tasks.list_user_tasks, user_id, limit)

    async def stats(self, window_hours: Optional[int] = None) -> Dict[str, int]:
        return await run_db(
            tasks.get_queue_stats, self._clock(), window_hours or settings.queue_stats_window_hours
        )

    async def clear_finished(self, older_than_days: Optional[int] = None) -> int:
        days = settings.queue_retention_days if older_than_days is None else older_than_days
        return await run_db(tasks.clear_finished_tasks, self._clock(), days)
