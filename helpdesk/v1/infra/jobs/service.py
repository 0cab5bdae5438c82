"""
Job lifecycle manager: enqueue, dequeue, complete and fail.

This is the only code that moves job ids between the per-type lists and
the only place ``attempts`` changes.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from helpdesk.config.logging import get_logger
from helpdesk.v1.core.exceptions import ValidationError, jsonable_errors
from helpdesk.v1.infra.jobs.dead_letter import DeadLetterStore, new_record_id
from helpdesk.v1.infra.jobs.models import JobStatus, JobType, QueueName
from helpdesk.v1.infra.jobs.retry import RetryPolicy
from helpdesk.v1.infra.jobs.schemas import FailedJobRecord, Job, QueueStats, job_adapter
from helpdesk.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class UnknownJobTypeError(ValidationError):
    """Raised when enqueueing a type outside the deployment's closed set."""

    def __init__(self, job_type: str):
        super().__init__(
            f"Unknown job type: {job_type}",
            details={
                "type": job_type,
                "allowed": [t.value for t in JobType],
            },
        )


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobService:
    """Orchestrates the job store, its queue lists and the retry policy."""

    def __init__(
        self,
        store: JobStore,
        dead_letters: DeadLetterStore,
        retry_policy: RetryPolicy | None = None,
        default_max_attempts: int = 3,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.dead_letters = dead_letters
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_max_attempts = default_max_attempts
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    async def enqueue(
        self,
        job_type: JobType | str,
        data: dict[str, Any],
        max_attempts: int | None = None,
    ) -> str:
        """
        Persist a new PENDING job and push its id onto the type's pending list.

        No handler runs here; the id is returned immediately.

        Raises:
            UnknownJobTypeError: ``job_type`` is not a known job type
            ValidationError: ``data`` does not match the type's payload schema
        """
        job_type = _coerce_type(job_type)
        job_id = str(uuid.uuid4())

        try:
            job = job_adapter.validate_python(
                {
                    "id": job_id,
                    "type": job_type.value,
                    "data": data,
                    "status": JobStatus.PENDING,
                    "attempts": 0,
                    "max_attempts": max_attempts or self.default_max_attempts,
                    "created_at": self.now(),
                }
            )
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid payload for job type {job_type.value}",
                details={"errors": jsonable_errors(e.errors())},
            ) from e

        await self.store.put(job)
        await self.store.push_pending(job_type, job_id)

        logger.info(
            "Job enqueued",
            job_id=job_id,
            job_type=job_type.value,
            max_attempts=job.max_attempts,
        )
        return job_id

    async def dequeue(self, job_type: JobType | str) -> Job | None:
        """
        Claim the next runnable job of ``job_type``.

        Jobs whose ``retry_at`` is still in the future are pushed back to the
        tail of pending untouched. Once a deferred id comes round a second
        time the list holds nothing runnable and None is returned.
        """
        job_type = _coerce_type(job_type)
        deferred: set[str] = set()

        while True:
            job_id = await self.store.pop_pending(job_type)
            if job_id is None:
                return None

            if job_id in deferred:
                await self.store.push_pending(job_type, job_id)
                return None

            job = await self.store.get(job_id)
            if job is None:
                logger.warning(
                    "Dropping pending id with no job record",
                    job_id=job_id,
                    job_type=job_type.value,
                )
                continue

            now = self.now()
            if job.retry_at is not None and job.retry_at > now:
                await self.store.push_pending(job_type, job_id)
                deferred.add(job_id)
                logger.debug(
                    "Job not yet due, re-pending",
                    job_id=job_id,
                    job_type=job_type.value,
                    retry_at=job.retry_at.isoformat(),
                )
                continue

            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.attempts += 1
            await self.store.put(job)
            await self.store.push_processing(job_type, job_id)

            logger.debug(
                "Job dequeued",
                job_id=job_id,
                job_type=job_type.value,
                attempts=job.attempts,
            )
            return job

    async def complete(
        self, job_id: str, job_type: JobType | str, result: Any = None
    ) -> None:
        """Mark a job COMPLETED and attach its result. Safe to call twice."""
        job_type = _coerce_type(job_type)
        job = await self.store.get(job_id)
        if job is None:
            logger.warning("Cannot complete unknown job", job_id=job_id)
            return

        job.status = JobStatus.COMPLETED
        job.completed_at = self.now()
        job.result = result
        await self.store.put(job)
        await self.store.remove_processing(job_type, job_id)

        logger.info(
            "Job completed",
            job_id=job_id,
            job_type=job_type.value,
            attempts=job.attempts,
        )

    async def fail(self, job_id: str, job_type: JobType | str, error: str) -> None:
        """
        Record a failed attempt.

        With attempts left the job goes back to pending with a backoff
        ``retry_at``; otherwise it becomes FAILED, lands on the failed list
        and is archived in the dead-letter log.
        """
        job_type = _coerce_type(job_type)
        job = await self.store.get(job_id)
        if job is None:
            logger.warning("Cannot fail unknown job", job_id=job_id, error=error)
            return

        job.error = error
        await self.store.remove_processing(job_type, job_id)
        now = self.now()

        if self.retry_policy.is_max_attempts_exceeded(job):
            job.status = JobStatus.FAILED
            job.completed_at = now
            await self.store.put(job)
            await self.store.push_failed(job_type, job_id)
            await self._archive(job, now)

            logger.error(
                "Job failed permanently",
                job_id=job_id,
                job_type=job_type.value,
                attempts=job.attempts,
                error=error,
            )
            return

        delay_ms = self.retry_policy.retry_delay(job)
        job.retry_at = now + timedelta(milliseconds=delay_ms)
        job.status = JobStatus.PENDING
        await self.store.put(job)
        await self.store.push_pending(job_type, job_id)

        logger.warning(
            "Job retry scheduled",
            job_id=job_id,
            job_type=job_type.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            delay_ms=delay_ms,
            error=error,
        )

    async def get_job(self, job_id: str) -> Job | None:
        return await self.store.get(job_id)

    async def queue_depth(self, job_type: JobType | str) -> int:
        return await self.store.length(QueueName.PENDING, _coerce_type(job_type))

    async def processing_count(self, job_type: JobType | str) -> int:
        return await self.store.length(QueueName.PROCESSING, _coerce_type(job_type))

    async def failed_count(self, job_type: JobType | str) -> int:
        return await self.store.length(QueueName.FAILED, _coerce_type(job_type))

    async def queue_stats(self, job_type: JobType | str) -> QueueStats:
        return QueueStats(
            pending=await self.queue_depth(job_type),
            processing=await self.processing_count(job_type),
            failed=await self.failed_count(job_type),
        )

    async def stats(self) -> dict[str, QueueStats]:
        """Per-type list depths for every known job type."""
        return {t.value: await self.queue_stats(t) for t in JobType}

    async def _archive(self, job: Job, failed_at: datetime) -> None:
        record = FailedJobRecord(
            id=new_record_id(),
            job_id=job.id,
            type=JobType(job.type),
            data=job.data.model_dump(mode="json"),
            error=job.error or "Unknown error",
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            failed_at=failed_at,
        )
        try:
            await self.dead_letters.add(record)
        except Exception:
            # The failed list still indexes the job
            logger.exception(
                "Failed to write dead-letter record",
                job_id=job.id,
                job_type=job.type,
            )


def _coerce_type(job_type: JobType | str) -> JobType:
    if isinstance(job_type, JobType):
        return job_type
    try:
        return JobType(job_type)
    except ValueError:
        raise UnknownJobTypeError(str(job_type)) from None
