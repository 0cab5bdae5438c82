"""
Job store and queue primitive.

A store keeps full job records by id plus three per-type lists of ids
(pending, processing, failed). Ids are pushed on one end and popped from
the other, so each list is FIFO. Every list operation is atomic with
respect to concurrent workers: two concurrent ``pop_pending`` calls on
the same type never return the same id.
"""

import asyncio
from collections import defaultdict, deque
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.config.logging import get_logger
from helpdesk.v1.infra.jobs.models import JobQueueEntry, JobRow, JobType, QueueName
from helpdesk.v1.infra.jobs.schemas import Job, job_adapter

logger = get_logger(__name__)


class JobStore(Protocol):
    """Durable keyed job storage plus per-type FIFO lists of job ids."""

    async def put(self, job: Job) -> None: ...

    async def get(self, job_id: str) -> Job | None: ...

    async def push_pending(self, job_type: JobType, job_id: str) -> None: ...

    async def pop_pending(self, job_type: JobType) -> str | None: ...

    async def push_processing(self, job_type: JobType, job_id: str) -> None: ...

    async def remove_processing(self, job_type: JobType, job_id: str) -> None: ...

    async def push_failed(self, job_type: JobType, job_id: str) -> None: ...

    async def length(self, queue: QueueName, job_type: JobType) -> int: ...

    async def contains(self, queue: QueueName, job_type: JobType, job_id: str) -> bool: ...


class InMemoryJobStore:
    """
    Process-local store guarded by an asyncio lock.

    Records are kept serialized so callers never share mutable state with
    the store, the same way they would not with a real database.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}
        self._lists: dict[tuple[QueueName, str], deque[str]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def put(self, job: Job) -> None:
        async with self._lock:
            self._records[job.id] = job.model_dump(mode="json")

    async def get(self, job_id: str) -> Job | None:
        async with self._lock:
            raw = self._records.get(job_id)
        return job_adapter.validate_python(raw) if raw is not None else None

    async def push_pending(self, job_type: JobType, job_id: str) -> None:
        await self._push(QueueName.PENDING, job_type, job_id)

    async def pop_pending(self, job_type: JobType) -> str | None:
        async with self._lock:
            entries = self._lists[(QueueName.PENDING, _key(job_type))]
            return entries.pop() if entries else None

    async def push_processing(self, job_type: JobType, job_id: str) -> None:
        await self._push(QueueName.PROCESSING, job_type, job_id)

    async def remove_processing(self, job_type: JobType, job_id: str) -> None:
        async with self._lock:
            entries = self._lists[(QueueName.PROCESSING, _key(job_type))]
            try:
                entries.remove(job_id)
            except ValueError:
                pass

    async def push_failed(self, job_type: JobType, job_id: str) -> None:
        await self._push(QueueName.FAILED, job_type, job_id)

    async def length(self, queue: QueueName, job_type: JobType) -> int:
        async with self._lock:
            return len(self._lists[(queue, _key(job_type))])

    async def contains(self, queue: QueueName, job_type: JobType, job_id: str) -> bool:
        async with self._lock:
            return job_id in self._lists[(queue, _key(job_type))]

    def reset(self) -> None:
        """Drop all records and lists."""
        self._records.clear()
        self._lists.clear()

    async def _push(self, queue: QueueName, job_type: JobType, job_id: str) -> None:
        async with self._lock:
            self._lists[(queue, _key(job_type))].appendleft(job_id)


class SqlJobStore:
    """
    SQLAlchemy-backed store.

    On Postgres the pending pop uses ``FOR UPDATE SKIP LOCKED`` so concurrent
    workers do not even contend for the same row; on every backend the
    claim is the conditional delete, which only one worker can win.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def put(self, job: Job) -> None:
        async with self._session_factory() as session:
            row = await session.get(JobRow, job.id)
            record = job.model_dump(mode="json")
            if row is None:
                session.add(
                    JobRow(
                        id=job.id,
                        type=_key(job.type),
                        status=job.status.value,
                        record=record,
                        created_at=job.created_at,
                    )
                )
            else:
                row.status = job.status.value
                row.record = record
            await session.commit()

    async def get(self, job_id: str) -> Job | None:
        async with self._session_factory() as session:
            row = await session.get(JobRow, job_id)
            return job_adapter.validate_python(row.record) if row is not None else None

    async def push_pending(self, job_type: JobType, job_id: str) -> None:
        await self._push(QueueName.PENDING, job_type, job_id)

    async def pop_pending(self, job_type: JobType) -> str | None:
        async with self._session_factory() as session:
            while True:
                result = await session.execute(
                    select(JobQueueEntry.id, JobQueueEntry.job_id)
                    .where(
                        JobQueueEntry.queue == QueueName.PENDING.value,
                        JobQueueEntry.job_type == _key(job_type),
                    )
                    .order_by(JobQueueEntry.id)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                entry = result.first()
                if entry is None:
                    await session.rollback()
                    return None

                deleted = await session.execute(
                    delete(JobQueueEntry).where(JobQueueEntry.id == entry.id)
                )
                await session.commit()
                if deleted.rowcount == 1:
                    return entry.job_id

                # Another worker claimed it between our read and delete
                logger.debug(
                    "Lost pending claim race, retrying",
                    job_type=_key(job_type),
                    job_id=entry.job_id,
                )

    async def push_processing(self, job_type: JobType, job_id: str) -> None:
        await self._push(QueueName.PROCESSING, job_type, job_id)

    async def remove_processing(self, job_type: JobType, job_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(JobQueueEntry).where(
                    JobQueueEntry.queue == QueueName.PROCESSING.value,
                    JobQueueEntry.job_type == _key(job_type),
                    JobQueueEntry.job_id == job_id,
                )
            )
            await session.commit()

    async def push_failed(self, job_type: JobType, job_id: str) -> None:
        await self._push(QueueName.FAILED, job_type, job_id)

    async def length(self, queue: QueueName, job_type: JobType) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(JobQueueEntry.id)).where(
                    JobQueueEntry.queue == queue.value,
                    JobQueueEntry.job_type == _key(job_type),
                )
            )
            return result.scalar() or 0

    async def contains(self, queue: QueueName, job_type: JobType, job_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(JobQueueEntry.id)).where(
                    JobQueueEntry.queue == queue.value,
                    JobQueueEntry.job_type == _key(job_type),
                    JobQueueEntry.job_id == job_id,
                )
            )
            return (result.scalar() or 0) > 0

    async def _push(self, queue: QueueName, job_type: JobType, job_id: str) -> None:
        async with self._session_factory() as session:
            session.add(
                JobQueueEntry(queue=queue.value, job_type=_key(job_type), job_id=job_id)
            )
            await session.commit()


def _key(job_type: JobType | str) -> str:
    return job_type.value if isinstance(job_type, JobType) else str(job_type)
