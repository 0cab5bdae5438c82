"""The SQL job store behaves like the in-memory one under the job service"""

import asyncio

import pytest

from helpdesk.v1.infra.jobs.dead_letter import InMemoryDeadLetterStore
from helpdesk.v1.infra.jobs.models import JobStatus, JobType, QueueName
from helpdesk.v1.infra.jobs.retry import RetryPolicy
from helpdesk.v1.infra.jobs.schemas import FailedJobFilters
from helpdesk.v1.infra.jobs.service import JobService
from helpdesk.v1.infra.jobs.store import InMemoryJobStore, SqlJobStore

EMAIL = {"to": "agent@example.test", "subject": "Hello", "html": "<p>Hello</p>"}


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return InMemoryJobStore()
    return SqlJobStore(session_factory)


@pytest.fixture
def service(store, clock) -> JobService:
    return JobService(
        store, InMemoryDeadLetterStore(), retry_policy=RetryPolicy(), clock=clock
    )


class TestJobStoreParity:
    async def test_fifo_order(self, service):
        ids = [await service.enqueue(JobType.SEND_EMAIL, EMAIL) for _ in range(3)]

        claimed = [(await service.dequeue(JobType.SEND_EMAIL)).id for _ in range(3)]

        assert claimed == ids
        assert await service.dequeue(JobType.SEND_EMAIL) is None

    async def test_concurrent_dequeue_claims_each_job_once(self, service, store):
        ids = {await service.enqueue(JobType.SEND_EMAIL, EMAIL) for _ in range(4)}

        results = await asyncio.gather(
            *(service.dequeue(JobType.SEND_EMAIL) for _ in range(6))
        )
        claimed = [job.id for job in results if job is not None]

        assert sorted(claimed) == sorted(ids)
        assert results.count(None) == 2
        assert await store.length(QueueName.PENDING, JobType.SEND_EMAIL) == 0
        assert await store.length(QueueName.PROCESSING, JobType.SEND_EMAIL) == 4

    async def test_types_do_not_share_queues(self, service, store):
        await service.enqueue(JobType.SEND_EMAIL, EMAIL)

        assert await service.dequeue(JobType.AUDIT_COMPACTION) is None
        assert await store.length(QueueName.PENDING, JobType.SEND_EMAIL) == 1

    async def test_failed_attempt_is_re_pended_with_backoff(self, service, store, clock):
        job_id = await service.enqueue(JobType.SEND_EMAIL, EMAIL)
        await service.dequeue(JobType.SEND_EMAIL)

        await service.fail(job_id, JobType.SEND_EMAIL, "smtp timeout")

        job = await store.get(job_id)
        assert job.status == JobStatus.PENDING
        assert job.retry_at > clock()
        assert job.error == "smtp timeout"
        assert await store.length(QueueName.PENDING, JobType.SEND_EMAIL) == 1
        assert await store.length(QueueName.PROCESSING, JobType.SEND_EMAIL) == 0
        assert await service.dequeue(JobType.SEND_EMAIL) is None

    async def test_exhausted_job_lands_on_failed_list(self, service, store):
        job_id = await service.enqueue(JobType.SEND_EMAIL, EMAIL, max_attempts=1)
        await service.dequeue(JobType.SEND_EMAIL)

        await service.fail(job_id, JobType.SEND_EMAIL, "permanent failure")

        assert (await store.get(job_id)).status == JobStatus.FAILED
        assert await store.length(QueueName.PROCESSING, JobType.SEND_EMAIL) == 0
        assert await store.length(QueueName.PENDING, JobType.SEND_EMAIL) == 0
        assert await store.length(QueueName.FAILED, JobType.SEND_EMAIL) == 1
        assert await store.contains(QueueName.FAILED, JobType.SEND_EMAIL, job_id)
        [record] = await service.dead_letters.list(FailedJobFilters())
        assert record.job_id == job_id
        assert record.error == "permanent failure"
