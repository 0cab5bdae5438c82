"""Tests for the job worker: handler dispatch, drain passes and the run loop"""

import asyncio

import pytest

from helpdesk.v1.core.registries import JobRegistry
from helpdesk.v1.infra.jobs.models import JobStatus, JobType
from helpdesk.v1.infra.jobs.schemas import FailedJobFilters, JobResult
from helpdesk.v1.infra.jobs.worker import JobWorker

EMAIL = {"to": "agent@example.test", "subject": "Hello", "html": "<p>Hello</p>"}


class RecordingHandler:
    def __init__(self, result=None, exc: Exception | None = None):
        self.result = result if result is not None else JobResult.ok({"done": True})
        self.exc = exc
        self.calls = []

    async def handle(self, job):
        self.calls.append(job.id)
        if self.exc is not None:
            raise self.exc
        return self.result


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def worker(job_service, registry, test_settings) -> JobWorker:
    return JobWorker(job_service, registry, test_settings)


class TestProcessJob:
    async def test_success_completes_job(self, job_service, registry, worker):
        handler = RecordingHandler()
        registry.register(JobType.SEND_EMAIL.value, handler)
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)

        job = await job_service.dequeue(JobType.SEND_EMAIL)
        assert await worker.process_job(job) is True

        stored = await job_service.get_job(job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result == {"done": True}
        assert handler.calls == [job_id]

    async def test_failed_result_schedules_retry(self, job_service, registry, worker):
        registry.register(JobType.SEND_EMAIL.value, RecordingHandler(JobResult.failed("nope")))
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)

        assert await worker.process_job(await job_service.dequeue(JobType.SEND_EMAIL)) is False

        stored = await job_service.get_job(job_id)
        assert stored.status == JobStatus.PENDING
        assert stored.error == "nope"

    async def test_raising_handler_is_contained(self, job_service, registry, worker):
        registry.register(
            JobType.SEND_EMAIL.value, RecordingHandler(exc=RuntimeError("kaboom"))
        )
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)

        assert await worker.process_job(await job_service.dequeue(JobType.SEND_EMAIL)) is False
        assert (await job_service.get_job(job_id)).error == "kaboom"

    async def test_dict_result_is_coerced(self, job_service, registry, worker):
        registry.register(
            JobType.SEND_EMAIL.value, RecordingHandler({"success": True, "data": 42})
        )
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)

        await worker.process_job(await job_service.dequeue(JobType.SEND_EMAIL))
        assert (await job_service.get_job(job_id)).result == 42

    async def test_missing_handler_fails_job(self, job_service, worker):
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL, max_attempts=1)

        await worker.process_job(await job_service.dequeue(JobType.SEND_EMAIL))

        stored = await job_service.get_job(job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "No handler registered for job type SEND_EMAIL"


class TestDrain:
    async def test_drain_respects_limit(self, job_service, registry, worker):
        registry.register(JobType.SEND_EMAIL.value, RecordingHandler())
        for _ in range(5):
            await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)

        assert await worker.drain(JobType.SEND_EMAIL, 3) == 3
        assert await job_service.queue_depth(JobType.SEND_EMAIL) == 2

    async def test_drain_all_reports_per_type(self, job_service, registry, worker):
        registry.register(JobType.SEND_EMAIL.value, RecordingHandler())
        registry.register(JobType.AUDIT_COMPACTION.value, RecordingHandler())
        await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)
        await job_service.enqueue(JobType.AUDIT_COMPACTION, {"retention_days": 30})
        await job_service.enqueue(JobType.AUDIT_COMPACTION, {"retention_days": 30})

        counts = await worker.drain_all(10)

        assert counts["SEND_EMAIL"] == 1
        assert counts["AUDIT_COMPACTION"] == 2
        assert counts["RECALCULATE_SLA"] == 0

    async def test_drain_all_isolates_a_failing_type(
        self, job_service, registry, worker, monkeypatch
    ):
        registry.register(JobType.SEND_EMAIL.value, RecordingHandler())
        await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)
        await job_service.enqueue(JobType.AUDIT_COMPACTION, {"retention_days": 30})

        store = job_service.store
        pop_pending = store.pop_pending

        async def flaky_pop(job_type):
            if job_type == JobType.AUDIT_COMPACTION:
                raise ConnectionError("queue unavailable")
            return await pop_pending(job_type)

        monkeypatch.setattr(store, "pop_pending", flaky_pop)

        counts = await worker.drain_all(10)

        assert counts["SEND_EMAIL"] == 1
        assert counts["AUDIT_COMPACTION"] == 0
        assert set(counts) == {t.value for t in JobType}
        assert await job_service.queue_depth(JobType.AUDIT_COMPACTION) == 1

    async def test_always_failing_job_ends_in_dead_letter(
        self, job_service, registry, worker, clock
    ):
        registry.register(
            JobType.SEND_EMAIL.value, RecordingHandler(JobResult.failed("smtp down"))
        )
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL, max_attempts=2)

        assert await worker.drain(JobType.SEND_EMAIL, 10) == 1
        clock.advance(seconds=2)
        assert await worker.drain(JobType.SEND_EMAIL, 10) == 1

        job = await job_service.get_job(job_id)
        assert job.status == JobStatus.FAILED
        records = await job_service.dead_letters.list(FailedJobFilters())
        assert len(records) == 1
        assert records[0].attempts == 2
        assert records[0].error == "smtp down"

    async def test_not_yet_due_job_is_skipped(self, job_service, registry, worker):
        handler = RecordingHandler(JobResult.failed("later"))
        registry.register(JobType.SEND_EMAIL.value, handler)
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)
        await worker.drain(JobType.SEND_EMAIL, 10)
        assert handler.calls == [job_id]

        # retry_at is a second away and the clock has not moved
        assert await worker.drain(JobType.SEND_EMAIL, 10) == 0

        job = await job_service.get_job(job_id)
        assert handler.calls == [job_id]
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1
        assert await job_service.queue_depth(JobType.SEND_EMAIL) == 1


class TestRunLoop:
    async def test_run_until_stopped(self, job_service, registry, worker):
        handler = RecordingHandler()
        registry.register(JobType.SEND_EMAIL.value, handler)
        job_id = await job_service.enqueue(JobType.SEND_EMAIL, EMAIL)

        task = asyncio.create_task(worker.run())
        for _ in range(100):
            if handler.calls:
                break
            await asyncio.sleep(0.01)
        worker.stop()
        await asyncio.wait_for(task, timeout=2)

        assert handler.calls == [job_id]
        assert worker.running is False

    async def test_run_twice_is_rejected(self, worker):
        worker.running = True
        with pytest.raises(RuntimeError):
            await worker.run()
