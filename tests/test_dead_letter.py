"""Tests for dead-letter listing, replay and deletion"""

from datetime import timedelta

import pytest

from helpdesk.v1.core.exceptions import NotFoundError
from helpdesk.v1.infra.jobs.dead_letter import (
    DeadLetterService,
    InMemoryDeadLetterStore,
    SqlDeadLetterStore,
)
from helpdesk.v1.infra.jobs.models import JobStatus, JobType
from helpdesk.v1.infra.jobs.schemas import FailedJobFilters, FailedJobRecord

from conftest import T0

EMAIL = {"to": "agent@example.test", "subject": "Hello", "html": "<p>Hello</p>"}


async def _exhaust(job_service, job_type=JobType.SEND_EMAIL, data=EMAIL) -> str:
    job_id = await job_service.enqueue(job_type, data, max_attempts=1)
    await job_service.dequeue(job_type)
    await job_service.fail(job_id, job_type, "permanent failure")
    return job_id


@pytest.fixture
def dead_letter_service(job_service) -> DeadLetterService:
    return DeadLetterService(job_service.dead_letters, job_service)


class TestDeadLetterService:
    async def test_list_newest_first_with_total(self, job_service, dead_letter_service, clock):
        first = await _exhaust(job_service)
        clock.advance(minutes=1)
        second = await _exhaust(job_service)

        records, total = await dead_letter_service.list_failed_jobs(
            FailedJobFilters(limit=1)
        )

        assert total == 2
        assert [r.job_id for r in records] == [second]

        records, _ = await dead_letter_service.list_failed_jobs(
            FailedJobFilters(limit=1, offset=1)
        )
        assert [r.job_id for r in records] == [first]

    async def test_filter_by_type_and_date(self, job_service, dead_letter_service, clock):
        await _exhaust(job_service)
        clock.advance(hours=2)
        audit = await _exhaust(
            job_service, JobType.AUDIT_COMPACTION, {"retention_days": 30}
        )

        records, total = await dead_letter_service.list_failed_jobs(
            FailedJobFilters(type=JobType.AUDIT_COMPACTION)
        )
        assert total == 1
        assert records[0].job_id == audit

        records, total = await dead_letter_service.list_failed_jobs(
            FailedJobFilters(date_from=T0 + timedelta(hours=1))
        )
        assert total == 1

        records, total = await dead_letter_service.list_failed_jobs(
            FailedJobFilters(date_to=T0 + timedelta(hours=1))
        )
        assert total == 1
        assert records[0].type == JobType.SEND_EMAIL

    async def test_retry_creates_fresh_job_and_keeps_record(
        self, job_service, dead_letter_service, clock
    ):
        original = await _exhaust(job_service)
        [record], _ = await dead_letter_service.list_failed_jobs()
        clock.advance(minutes=30)

        new_id = await dead_letter_service.retry(record.id)

        assert new_id != original
        job = await job_service.get_job(new_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == record.max_attempts
        assert job.data.model_dump(mode="json") == {**record.data}

        after = await dead_letter_service.get_failed_job(record.id)
        assert after.retried_at == clock()
        assert after.model_dump(exclude={"retried_at"}) == record.model_dump(
            exclude={"retried_at"}
        )
        assert (await job_service.get_job(original)).status == JobStatus.FAILED

    async def test_retry_unknown_record(self, dead_letter_service):
        with pytest.raises(NotFoundError):
            await dead_letter_service.retry("missing")

    async def test_delete(self, job_service, dead_letter_service):
        await _exhaust(job_service)
        [record], _ = await dead_letter_service.list_failed_jobs()

        await dead_letter_service.delete(record.id)

        _, total = await dead_letter_service.list_failed_jobs()
        assert total == 0
        with pytest.raises(NotFoundError):
            await dead_letter_service.delete(record.id)


def _record(record_id: str, job_type: JobType, failed_at) -> FailedJobRecord:
    return FailedJobRecord(
        id=record_id,
        job_id=f"job-{record_id}",
        type=job_type,
        data={"retention_days": 7},
        error="boom",
        attempts=3,
        max_attempts=3,
        failed_at=failed_at,
    )


class TestStoreParity:
    """The SQL store answers the same queries as the in-memory one."""

    @pytest.fixture(params=["memory", "sql"])
    def store(self, request, session_factory):
        if request.param == "memory":
            return InMemoryDeadLetterStore()
        return SqlDeadLetterStore(session_factory)

    async def test_round_trip_and_ordering(self, store):
        await store.add(_record("a", JobType.AUDIT_COMPACTION, T0))
        await store.add(_record("b", JobType.SEND_EMAIL, T0 + timedelta(hours=1)))
        await store.add(_record("c", JobType.AUDIT_COMPACTION, T0 + timedelta(hours=2)))

        records = await store.list(FailedJobFilters())
        assert [r.id for r in records] == ["c", "b", "a"]
        assert records[0].failed_at == T0 + timedelta(hours=2)

        filters = FailedJobFilters(type=JobType.AUDIT_COMPACTION)
        assert await store.count(filters) == 2

    async def test_mark_retried_and_delete(self, store):
        await store.add(_record("a", JobType.AUDIT_COMPACTION, T0))

        await store.mark_retried("a", T0 + timedelta(days=1))
        assert (await store.get("a")).retried_at == T0 + timedelta(days=1)

        assert await store.delete("a") is True
        assert await store.delete("a") is False
        assert await store.get("a") is None

    async def test_naive_date_filters_read_as_utc(self, store):
        await store.add(_record("a", JobType.AUDIT_COMPACTION, T0))
        await store.add(_record("b", JobType.AUDIT_COMPACTION, T0 + timedelta(hours=2)))

        filters = FailedJobFilters(
            date_from=(T0 + timedelta(hours=1)).replace(tzinfo=None),
            date_to=(T0 + timedelta(hours=3)).replace(tzinfo=None),
        )

        assert filters.date_from.tzinfo is not None
        assert [r.id for r in await store.list(filters)] == ["b"]
        assert await store.count(filters) == 1
