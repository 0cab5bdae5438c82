"""
Job worker: drains per-type queues through the handler registry.
"""

import asyncio
import os
import socket

from helpdesk.config.logging import get_logger
from helpdesk.config.settings import Settings
from helpdesk.v1.core.registries import JobRegistry
from helpdesk.v1.infra.jobs.models import JobType
from helpdesk.v1.infra.jobs.schemas import Job, JobResult
from helpdesk.v1.infra.jobs.service import JobService

logger = get_logger(__name__)


class JobWorker:
    """
    Polling job worker.

    Any number of workers may drain the same queue; exclusivity comes from
    the store's atomic pop, not from the worker. Nothing a handler does
    (returning failure or raising) escapes ``process_job``.
    """

    def __init__(self, service: JobService, registry: JobRegistry, settings: Settings):
        self.service = service
        self.registry = registry
        self.settings = settings
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self._stop_event = asyncio.Event()

    async def process_job(self, job: Job) -> bool:
        """Run the handler for a dequeued job and route its result."""
        job_type = JobType(job.type)
        job_logger = logger.bind(
            job_id=job.id, job_type=job_type.value, attempts=job.attempts
        )

        if not self.registry.has(job_type):
            error = f"No handler registered for job type {job_type.value}"
            job_logger.error("Missing job handler")
            await self.service.fail(job.id, job_type, error)
            return False

        try:
            job_logger.debug("Processing job started")
            handler = self.registry.get(job_type)
            result = await handler.handle(job)
            if not isinstance(result, JobResult):
                result = JobResult.model_validate(result)
        except Exception as e:
            job_logger.exception("Job handler raised")
            await self.service.fail(job.id, job_type, str(e) or type(e).__name__)
            return False

        if result.success:
            await self.service.complete(job.id, job_type, result.data)
            return True

        await self.service.fail(job.id, job_type, result.error or "Unknown error")
        return False

    async def drain(self, job_type: JobType, max_jobs: int) -> int:
        """
        Process up to ``max_jobs`` jobs of one type, one at a time.

        Stops early when nothing runnable is left. Returns the number of
        jobs that were dequeued and handed to a handler.
        """
        processed = 0
        while processed < max_jobs:
            job = await self.service.dequeue(job_type)
            if job is None:
                break
            await self.process_job(job)
            processed += 1
        return processed

    async def drain_all(self, max_jobs_per_type: int) -> dict[str, int]:
        """Drain every job type concurrently.

        A drain that raises (store failure outside a handler) is logged and
        counted as 0 without cancelling the other types.
        """
        job_types = list(JobType)
        outcomes = await asyncio.gather(
            *(self.drain(t, max_jobs_per_type) for t in job_types),
            return_exceptions=True,
        )

        counts: dict[str, int] = {}
        for job_type, outcome in zip(job_types, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Drain failed",
                    worker_id=self.worker_id,
                    job_type=job_type.value,
                    error=str(outcome) or type(outcome).__name__,
                    exc_info=outcome,
                )
                counts[job_type.value] = 0
            else:
                counts[job_type.value] = outcome
        return counts

    async def run(self) -> None:
        """Poll ``drain_all`` until ``stop()`` is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_event.clear()
        poll_interval = self.settings.job_poll_interval_ms / 1000
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            batch_size=self.settings.job_batch_size,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            handlers=self.registry.list(),
        )
        if missing := self.registry.missing(JobType):
            logger.warning("Draining job types without a handler", job_types=missing)

        try:
            while self.running:
                delay = poll_interval
                try:
                    counts = await self.drain_all(self.settings.job_batch_size)
                    total = sum(counts.values())
                    if total:
                        logger.info(
                            "Drain pass finished", worker_id=self.worker_id, processed=total
                        )
                except Exception:
                    logger.exception("Error in worker loop", worker_id=self.worker_id)
                    delay = max(poll_interval, 5.0)  # Back off on errors

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except TimeoutError:
                    pass
        finally:
            self.running = False
            logger.info("Job worker stopped", worker_id=self.worker_id)

    def stop(self) -> None:
        """Ask the loop to exit after the current drain pass."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        self.running = False
        self._stop_event.set()
