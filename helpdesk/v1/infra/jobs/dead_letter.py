"""
Dead-letter archive and its operator-facing administration.

The queue keeps its own failed list as an index; this module is the
queryable archive of permanently failed jobs. Replaying a record enqueues
a brand new job and only stamps ``retried_at`` on the original.
"""

import asyncio
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.config.logging import get_logger
from helpdesk.v1.core.exceptions import NotFoundError
from helpdesk.v1.infra.jobs.models import FailedJob
from helpdesk.v1.infra.jobs.schemas import FailedJobFilters, FailedJobRecord

if TYPE_CHECKING:
    from helpdesk.v1.infra.jobs.service import JobService

logger = get_logger(__name__)


class DeadLetterStore(Protocol):
    """Durable log of failed job records."""

    async def add(self, record: FailedJobRecord) -> None: ...

    async def get(self, record_id: str) -> FailedJobRecord | None: ...

    async def list(self, filters: FailedJobFilters) -> list[FailedJobRecord]: ...

    async def count(self, filters: FailedJobFilters) -> int: ...

    async def mark_retried(self, record_id: str, retried_at: datetime) -> None: ...

    async def delete(self, record_id: str) -> bool: ...


def new_record_id() -> str:
    return str(uuid.uuid4())


class InMemoryDeadLetterStore:
    """Dead-letter log kept in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, FailedJobRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: FailedJobRecord) -> None:
        async with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    async def get(self, record_id: str) -> FailedJobRecord | None:
        async with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    async def list(self, filters: FailedJobFilters) -> list[FailedJobRecord]:
        async with self._lock:
            matching = [r for r in self._records.values() if _matches(r, filters)]
        matching.sort(key=lambda r: r.failed_at, reverse=True)
        page = matching[filters.offset : filters.offset + filters.limit]
        return [r.model_copy(deep=True) for r in page]

    async def count(self, filters: FailedJobFilters) -> int:
        async with self._lock:
            return sum(1 for r in self._records.values() if _matches(r, filters))

    async def mark_retried(self, record_id: str, retried_at: datetime) -> None:
        async with self._lock:
            record = self._records.get(record_id)
            if record is not None:
                self._records[record_id] = record.model_copy(
                    update={"retried_at": retried_at}
                )

    async def delete(self, record_id: str) -> bool:
        async with self._lock:
            return self._records.pop(record_id, None) is not None


def _matches(record: FailedJobRecord, filters: FailedJobFilters) -> bool:
    if filters.type is not None and record.type != filters.type:
        return False
    if filters.date_from is not None and record.failed_at < filters.date_from:
        return False
    if filters.date_to is not None and record.failed_at > filters.date_to:
        return False
    return True


class SqlDeadLetterStore:
    """Dead-letter log in the ``failed_jobs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, record: FailedJobRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                FailedJob(
                    id=record.id,
                    job_id=record.job_id,
                    type=record.type.value,
                    data=record.data,
                    error=record.error,
                    attempts=record.attempts,
                    max_attempts=record.max_attempts,
                    failed_at=record.failed_at,
                    retried_at=record.retried_at,
                )
            )
            await session.commit()

    async def get(self, record_id: str) -> FailedJobRecord | None:
        async with self._session_factory() as session:
            row = await session.get(FailedJob, record_id)
            return FailedJobRecord.model_validate(row) if row else None

    async def list(self, filters: FailedJobFilters) -> list[FailedJobRecord]:
        query = (
            select(FailedJob)
            .where(*self._conditions(filters))
            .order_by(desc(FailedJob.failed_at))
            .offset(filters.offset)
            .limit(filters.limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [FailedJobRecord.model_validate(row) for row in result.scalars()]

    async def count(self, filters: FailedJobFilters) -> int:
        query = select(func.count(FailedJob.id)).where(*self._conditions(filters))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def mark_retried(self, record_id: str, retried_at: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(FailedJob)
                .where(FailedJob.id == record_id)
                .values(retried_at=retried_at)
            )
            await session.commit()

    async def delete(self, record_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(FailedJob).where(FailedJob.id == record_id)
            )
            await session.commit()
            return result.rowcount > 0

    @staticmethod
    def _conditions(filters: FailedJobFilters) -> list:
        conditions = []
        if filters.type is not None:
            conditions.append(FailedJob.type == filters.type.value)
        if filters.date_from is not None:
            conditions.append(FailedJob.failed_at >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(FailedJob.failed_at <= filters.date_to)
        return conditions


class DeadLetterService:
    """List, replay and delete permanently failed jobs."""

    def __init__(self, store: DeadLetterStore, jobs: "JobService"):
        self.store = store
        self.jobs = jobs

    async def list_failed_jobs(
        self, filters: FailedJobFilters | None = None
    ) -> tuple[list[FailedJobRecord], int]:
        """Return one page of records (newest first) and the filtered total."""
        filters = filters or FailedJobFilters()
        records = await self.store.list(filters)
        total = await self.store.count(filters.model_copy(update={"offset": 0}))
        return records, total

    async def get_failed_job(self, record_id: str) -> FailedJobRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise NotFoundError(
                "Failed job not found", details={"failed_job_id": record_id}
            )
        return record

    async def retry(self, record_id: str) -> str:
        """
        Replay a dead-lettered job as a new job with fresh attempts.

        The original record is kept as evidence; only ``retried_at`` changes.
        """
        record = await self.get_failed_job(record_id)

        job_id = await self.jobs.enqueue(
            record.type, record.data, max_attempts=record.max_attempts
        )
        await self.store.mark_retried(record.id, self.jobs.now())

        logger.info(
            "Failed job replayed",
            failed_job_id=record.id,
            original_job_id=record.job_id,
            new_job_id=job_id,
            job_type=record.type.value,
        )
        return job_id

    async def delete(self, record_id: str) -> None:
        deleted = await self.store.delete(record_id)
        if not deleted:
            raise NotFoundError(
                "Failed job not found", details={"failed_job_id": record_id}
            )
        logger.info("Failed job deleted", failed_job_id=record_id)
