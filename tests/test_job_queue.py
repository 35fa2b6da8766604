"""
Tests for the job queue: task persistence, priority dispatch, atomic
claims, processors and maintenance.
"""

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from import_hub.domain.imports import jobs
from import_hub.domain.imports.orchestrator import MODE_QUEUED, execute_import
from import_hub.domain.imports.validation import ValidationIssue
from import_hub.domain.queue import tasks
from import_hub.domain.queue.errors import QueueTaskNotFoundError
from import_hub.domain.queue.payloads import TaskPriority, TaskType
from import_hub.domain.queue.processors import build_processor_registry
from import_hub.domain.queue.scheduler import JobQueueScheduler
from tests.utils.fakes import RecordingStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


class RecordingProcessor:
    def __init__(self, result=None, error=None):
        self.seen = []
        self.result = result if result is not None else {"ok": True}
        self.error = error

    async def process(self, task):
        self.seen.append(task["id"])
        if self.error:
            raise self.error
        return self.result


class BlockingProcessor:
    def __init__(self):
        self.release = asyncio.Event()
        self.started = 0

    async def process(self, task):
        self.started += 1
        await self.release.wait()
        return None


def _scheduler(processors, clock=None, **kwargs):
    kwargs.setdefault("dispatch_limit", 5)
    return JobQueueScheduler(processors, start_on_submit=False, clock=clock or FakeClock(), **kwargs)


def _export_payload(job_id="job-1"):
    return {"import_job_id": job_id}


class TestTaskRepository:
    def test_create_task_validates_payload(self):
        now = FakeClock()()
        task = tasks.create_task(
            task_type=TaskType.EXPORT, priority=TaskPriority.LOW, payload=_export_payload(), user_id="u", now=now
        )
        assert task["status"] == tasks.TASK_PENDING
        assert task["priority"] == "low"
        assert task["payload"] == {"type": "export", "import_job_id": "job-1"}
        assert task["progress"] == 0

        with pytest.raises(ValueError):
            tasks.create_task(task_type="import", priority="high", payload={"rows": []}, user_id="u", now=now)
        with pytest.raises(ValueError):
            tasks.create_task(task_type="reindex", priority="high", payload={}, user_id="u", now=now)

    def test_claim_is_atomic(self):
        now = FakeClock()()
        task = tasks.create_task(
            task_type="export", priority="medium", payload=_export_payload(), user_id="u", now=now
        )

        assert tasks.claim_task(task["id"], now) is True
        assert tasks.claim_task(task["id"], now) is False
        claimed = tasks.get_task(task["id"])
        assert claimed["status"] == tasks.TASK_PROCESSING
        assert claimed["started_at"] is not None

    def test_pending_selection_order(self):
        clock = FakeClock()
        ids = {}
        for name, priority in [("low", "low"), ("medium_old", "medium"), ("high", "high"), ("medium_new", "medium")]:
            ids[name] = tasks.create_task(
                task_type="export", priority=priority, payload=_export_payload(), user_id="u", now=clock()
            )["id"]
            clock.advance(seconds=1)

        selected = [task["id"] for task in tasks.select_pending_tasks(10)]
        assert selected == [ids["high"], ids["medium_old"], ids["medium_new"], ids["low"]]
        assert [task["id"] for task in tasks.select_pending_tasks(2)] == [ids["high"], ids["medium_old"]]
        assert tasks.select_pending_tasks(0) == []

    def test_finish_requires_processing(self):
        now = FakeClock()()
        task = tasks.create_task(task_type="export", priority="low", payload=_export_payload(), user_id="u", now=now)
        assert tasks.complete_task(task["id"], now, {"x": 1}) is False
        assert tasks.get_task(task["id"])["status"] == tasks.TASK_PENDING

    def test_list_user_tasks(self):
        clock = FakeClock()
        first = tasks.create_task(task_type="export", priority="low", payload=_export_payload(), user_id="ana", now=clock())
        clock.advance(minutes=1)
        second = tasks.create_task(task_type="export", priority="low", payload=_export_payload(), user_id="ana", now=clock())
        tasks.create_task(task_type="export", priority="low", payload=_export_payload(), user_id="luis", now=clock())

        assert [task["id"] for task in tasks.list_user_tasks("ana")] == [second["id"], first["id"]]
        assert len(tasks.list_user_tasks("ana", limit=1)) == 1


class TestScheduler:
    @pytest.mark.asyncio
    async def test_dispatch_follows_priority_then_age(self):
        clock = FakeClock()
        processor = RecordingProcessor()
        scheduler = _scheduler({TaskType.EXPORT: processor}, clock=clock, dispatch_limit=2)

        submitted = {}
        for name, priority in [("low", TaskPriority.LOW), ("medium_old", TaskPriority.MEDIUM),
                               ("high", TaskPriority.HIGH), ("medium_new", TaskPriority.MEDIUM)]:
            task = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u", priority=priority)
            submitted[name] = task["id"]
            clock.advance(seconds=1)

        first = await scheduler.tick()
        await scheduler.wait_for_inflight()
        second = await scheduler.tick()
        await scheduler.wait_for_inflight()

        assert first == [submitted["high"], submitted["medium_old"]]
        assert second == [submitted["medium_new"], submitted["low"]]
        assert await scheduler.tick() == []
        for task_id in submitted.values():
            task = await scheduler.get_task(task_id)
            assert task["status"] == tasks.TASK_COMPLETED
            assert task["result"] == {"ok": True}
            assert task["progress"] == 100

    @pytest.mark.asyncio
    async def test_import_priority_depends_on_size(self):
        scheduler = _scheduler({}, high_priority_threshold=3)
        small = await scheduler.submit_import(import_job_id="j1", rows=[{}] * 3, field_mapping={}, user_id="u")
        large = await scheduler.submit_import(import_job_id="j2", rows=[{}] * 4, field_mapping={}, user_id="u")
        assert small["priority"] == "medium"
        assert large["priority"] == "high"

    @pytest.mark.asyncio
    async def test_concurrent_ticks_claim_each_task_once(self):
        processor = RecordingProcessor()
        first = _scheduler({TaskType.EXPORT: processor})
        second = _scheduler({TaskType.EXPORT: processor})
        task = await first.submit(TaskType.EXPORT, _export_payload(), user_id="u")

        dispatched = await asyncio.gather(first.tick(), second.tick())
        await first.wait_for_inflight()
        await second.wait_for_inflight()

        assert sorted(dispatched[0] + dispatched[1]) == [task["id"]]
        assert processor.seen == [task["id"]]

    @pytest.mark.asyncio
    async def test_in_flight_tasks_are_bounded(self):
        processor = BlockingProcessor()
        scheduler = _scheduler({TaskType.EXPORT: processor}, dispatch_limit=2)
        for _ in range(3):
            await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")

        assert len(await scheduler.tick()) == 2
        assert scheduler.in_flight == 2
        assert await scheduler.tick() == []

        processor.release.set()
        await scheduler.wait_for_inflight()
        assert scheduler.in_flight == 0
        assert len(await scheduler.tick()) == 1
        await scheduler.wait_for_inflight()
        assert processor.started == 3

    @pytest.mark.asyncio
    async def test_processor_error_fails_task_without_retry(self):
        processor = RecordingProcessor(error=RuntimeError("export backend down"))
        scheduler = _scheduler({TaskType.EXPORT: processor})
        task = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        failed = await scheduler.get_task(task["id"])
        assert failed["status"] == tasks.TASK_FAILED
        assert failed["error_message"] == "export backend down"
        assert failed["completed_at"] is not None
        assert await scheduler.tick() == []
        assert processor.seen == [task["id"]]

    @pytest.mark.asyncio
    async def test_unregistered_type_fails(self):
        scheduler = _scheduler({TaskType.EXPORT: RecordingProcessor()})
        task = await scheduler.submit_validation(
            target_table="productos", headers=["nombre"], rows=[{"nombre": "A"}], field_mapping={"nombre": "nombre"},
            user_id="u",
        )

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        failed = await scheduler.get_task(task["id"])
        assert failed["status"] == tasks.TASK_FAILED
        assert failed["error_message"] == "No processor registered for task type 'validation'"

    @pytest.mark.asyncio
    async def test_missing_task(self):
        with pytest.raises(QueueTaskNotFoundError):
            await _scheduler({}).get_task("missing")

    @pytest.mark.asyncio
    async def test_poller_runs_until_stopped(self):
        processor = RecordingProcessor()
        scheduler = JobQueueScheduler({TaskType.EXPORT: processor}, poll_interval=0.01)
        assert not scheduler.is_running

        task = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        assert scheduler.is_running

        for _ in range(200):
            if (await scheduler.get_task(task["id"]))["status"] == tasks.TASK_COMPLETED:
                break
            await asyncio.sleep(0.01)

        await scheduler.stop()
        assert not scheduler.is_running
        assert (await scheduler.get_task(task["id"]))["status"] == tasks.TASK_COMPLETED

    @pytest.mark.asyncio
    async def test_stop_during_claim_still_runs_the_claimed_task(self, monkeypatch):
        processor = RecordingProcessor()
        clock = FakeClock()
        scheduler = JobQueueScheduler(
            {TaskType.EXPORT: processor}, poll_interval=0.01, start_on_submit=False, clock=clock
        )
        claim_started = threading.Event()
        release_claim = threading.Event()
        original = tasks.claim_task

        def slow_claim(task_id, now):
            claim_started.set()
            release_claim.wait(5)
            return original(task_id, now)

        monkeypatch.setattr(tasks, "claim_task", slow_claim)
        first = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        clock.advance(seconds=1)
        second = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        scheduler.start()

        for _ in range(200):
            if claim_started.is_set():
                break
            await asyncio.sleep(0.01)
        assert claim_started.is_set()

        stopping = asyncio.ensure_future(scheduler.stop(wait=True))
        await asyncio.sleep(0.05)
        release_claim.set()
        await stopping

        assert not scheduler.is_running
        assert processor.seen == [first["id"]]
        assert (await scheduler.get_task(first["id"]))["status"] == tasks.TASK_COMPLETED
        # Selected but not yet claimed when stop arrived.
        assert (await scheduler.get_task(second["id"]))["status"] == tasks.TASK_PENDING

        monkeypatch.setattr(tasks, "claim_task", original)
        assert await scheduler.tick() == [second["id"]]
        await scheduler.wait_for_inflight()

    @pytest.mark.asyncio
    async def test_retention_cleanup(self):
        clock = FakeClock()
        scheduler = _scheduler({TaskType.EXPORT: RecordingProcessor()}, clock=clock)
        old = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        await scheduler.tick()
        await scheduler.wait_for_inflight()

        clock.advance(days=5)
        recent = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        await scheduler.tick()
        await scheduler.wait_for_inflight()
        pending = await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")

        clock.advance(days=3)
        removed = await scheduler.clear_finished(older_than_days=7)

        assert removed == 1
        with pytest.raises(QueueTaskNotFoundError):
            await scheduler.get_task(old["id"])
        assert (await scheduler.get_task(recent["id"]))["status"] == tasks.TASK_COMPLETED
        assert (await scheduler.get_task(pending["id"]))["status"] == tasks.TASK_PENDING

    @pytest.mark.asyncio
    async def test_stats_cover_last_day(self):
        clock = FakeClock()
        scheduler = _scheduler({TaskType.EXPORT: RecordingProcessor(error=RuntimeError("x"))}, clock=clock)
        await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        clock.advance(days=2)
        await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")
        await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u", priority=TaskPriority.HIGH)
        await scheduler.tick()
        await scheduler.wait_for_inflight()
        await scheduler.submit(TaskType.EXPORT, _export_payload(), user_id="u")

        stats = await scheduler.stats()

        # The task from two days ago is outside the window.
        assert stats == {"pending": 1, "processing": 0, "completed": 0, "failed": 2}


class TestProcessors:
    @pytest.mark.asyncio
    async def test_queued_import_end_to_end(self, store, productos_table):
        content = "nombre,precio\n" + "\n".join(f"Producto {i},{i}" for i in range(1, 251)) + "\n"
        scheduler = _scheduler(build_processor_registry(store, pause_seconds=0))

        submission = await execute_import(
            content.encode(),
            filename="productos.csv",
            target_table="productos",
            field_mapping={"nombre": "nombre", "precio": "precio"},
            user_id="user-1",
            store=store,
            scheduler=scheduler,
        )

        assert submission.mode == MODE_QUEUED
        assert submission.task["priority"] == "medium"
        assert submission.job["status"] == jobs.JOB_PENDING

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        task = await scheduler.get_task(submission.task["id"])
        assert task["status"] == tasks.TASK_COMPLETED
        assert task["progress"] == 100
        assert task["result"]["successful"] == 250

        job = jobs.get_import_job(submission.job["id"])
        assert job["status"] == jobs.JOB_COMPLETED
        assert (job["processed_records"], job["successful_records"], job["failed_records"]) == (250, 250, 0)

    @pytest.mark.asyncio
    async def test_import_task_progress_tracks_batches(self, monkeypatch):
        store = RecordingStore()
        registry = build_processor_registry(store, batch_size=50, pause_seconds=0)
        scheduler = _scheduler(registry)
        rows = [{"nombre": f"P{i}"} for i in range(120)]
        job = jobs.create_import_job(
            user_id="u", file_name="p.csv", file_type="csv", file_size=1, target_table="productos",
            total_records=120, field_mapping={"nombre": "nombre"},
        )
        progress_seen = []
        original = tasks.update_task_progress

        def spy(task_id, progress):
            progress_seen.append(progress)
            original(task_id, progress)

        monkeypatch.setattr(tasks, "update_task_progress", spy)
        await scheduler.submit_import(import_job_id=job["id"], rows=rows, field_mapping={"nombre": "nombre"}, user_id="u")
        await scheduler.tick()
        await scheduler.wait_for_inflight()

        assert progress_seen == [42, 83, 100]

    @pytest.mark.asyncio
    async def test_failed_import_job_fails_task(self):
        scheduler = _scheduler(build_processor_registry(RecordingStore(tables=()), pause_seconds=0))
        job = jobs.create_import_job(
            user_id="u", file_name="p.csv", file_type="csv", file_size=1, target_table="productos",
            total_records=1, field_mapping={"nombre": "nombre"},
        )
        task = await scheduler.submit_import(
            import_job_id=job["id"], rows=[{"nombre": "A"}], field_mapping={"nombre": "nombre"}, user_id="u"
        )

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        failed = await scheduler.get_task(task["id"])
        assert failed["status"] == tasks.TASK_FAILED
        assert "Destination table 'productos' does not exist" in failed["error_message"]
        assert jobs.get_import_job(job["id"])["status"] == jobs.JOB_FAILED

    @pytest.mark.asyncio
    async def test_validation_task_stores_result(self):
        scheduler = _scheduler(build_processor_registry(RecordingStore()))
        task = await scheduler.submit_validation(
            target_table="proveedores",
            headers=["Nombre", "Email"],
            rows=[{"Nombre": "Acme", "Email": "ventas@acme.com"}, {"Nombre": "", "Email": "nope"}],
            field_mapping={"Nombre": "nombre", "Email": "email"},
            user_id="u",
        )

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        result = (await scheduler.get_task(task["id"]))["result"]
        assert result["is_valid"] is False
        assert result["valid_rows"] == 1
        assert [(issue["row"], issue["field"]) for issue in result["errors"]] == [(2, "nombre"), (2, "email")]

    @pytest.mark.asyncio
    async def test_export_task_renders_csv(self):
        job = jobs.create_import_job(
            user_id="u", file_name="productos.csv", file_type="csv", file_size=1, target_table="productos",
            total_records=3, field_mapping={"precio": "precio"},
        )
        jobs.record_validation_issues(
            job["id"], [ValidationIssue(3, "precio", "Field 'precio' must be a valid number", "abc")]
        )
        scheduler = _scheduler(build_processor_registry(RecordingStore()))
        task = await scheduler.submit_export(import_job_id=job["id"], user_id="u")
        assert task["priority"] == "low"

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        result = (await scheduler.get_task(task["id"]))["result"]
        assert result["format"] == "csv"
        assert result["rows"] == 1
        lines = result["content"].strip().splitlines()
        assert lines[0] == "row_number,field_name,error_type,error_message,raw_value,severity,suggested_fix"
        assert lines[1].startswith("3,precio,validation,")

    @pytest.mark.asyncio
    async def test_export_of_missing_job_fails(self):
        scheduler = _scheduler(build_processor_registry(RecordingStore()))
        task = await scheduler.submit_export(import_job_id="missing", user_id="u")

        await scheduler.tick()
        await scheduler.wait_for_inflight()

        failed = await scheduler.get_task(task["id"])
        assert failed["status"] == tasks.TASK_FAILED
        assert failed["error_message"] == "Import job 'missing' not found"
