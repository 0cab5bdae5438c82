"""
Job management API endpoints.

Admin endpoints for job enqueueing, monitoring, cron-triggered draining
and dead-letter administration.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query

from helpdesk.config.logging import get_logger
from helpdesk.infra.container import ServiceContainer, get_container
from helpdesk.v1.core.exceptions import NotFoundError, create_success_response
from helpdesk.v1.core.security import AdminDep, Principal
from helpdesk.v1.infra.jobs.models import JobType
from helpdesk.v1.infra.jobs.schemas import (
    FailedJobFilters,
    FailedJobListResponse,
    JobEnqueueRequest,
    JobEnqueueResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Enqueue a new background job."""

    job_id = await container.jobs.enqueue(
        job_request.type, job_request.data, max_attempts=job_request.max_attempts
    )

    logger.info(
        "Job enqueued via API",
        job_id=job_id,
        job_type=job_request.type.value,
        user_id=principal.user_id,
    )

    response = JobEnqueueResponse(job_id=job_id, type=job_request.type)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Per-type pending / processing / failed list depths."""

    stats = await container.jobs.stats()
    return create_success_response(
        data={name: s.model_dump() for name, s in stats.items()}
    )


@router.post("/process", response_model=dict)
async def process_jobs(
    max_jobs_per_type: int | None = Query(
        default=None, ge=1, le=1000, description="Drain limit per job type"
    ),
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Run one drain pass over every job type (cron trigger)."""

    limit = max_jobs_per_type or container.settings.job_batch_size
    processed = await container.worker.drain_all(limit)
    stats = await container.jobs.stats()

    logger.info(
        "Jobs processed via API",
        processed=sum(processed.values()),
        user_id=principal.user_id,
    )

    return create_success_response(
        data={
            "processed": processed,
            "stats": {
                name: s.model_copy(update={"processed": processed[name]}).model_dump()
                for name, s in stats.items()
            },
        }
    )


@router.get("/failed", response_model=dict)
async def list_failed_jobs(
    type: JobType | None = Query(default=None, description="Filter by job type"),
    date_from: datetime | None = Query(default=None, description="Failed at or after"),
    date_to: datetime | None = Query(default=None, description="Failed at or before"),
    limit: int | None = Query(default=None, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """List dead-lettered jobs, newest failure first."""

    filters = FailedJobFilters(
        type=type,
        date_from=date_from,
        date_to=date_to,
        limit=limit or container.settings.dead_letter_page_size,
        offset=offset,
    )
    records, total = await container.dead_letters.list_failed_jobs(filters)

    response = FailedJobListResponse(
        jobs=records, total=total, limit=filters.limit, offset=filters.offset
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.post("/failed/{failed_job_id}/retry", response_model=dict)
async def retry_failed_job(
    failed_job_id: str,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Replay a dead-lettered job as a new job."""

    job_id = await container.dead_letters.retry(failed_job_id)
    return create_success_response(
        data={"job_id": job_id, "failed_job_id": failed_job_id},
        message="Job re-enqueued",
    )


@router.delete("/failed/{failed_job_id}", response_model=dict)
async def delete_failed_job(
    failed_job_id: str,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Remove a dead-letter record permanently."""

    await container.dead_letters.delete(failed_job_id)
    return create_success_response(
        data={"failed_job_id": failed_job_id}, message="Failed job deleted"
    )


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: str,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Get a specific job, including its result once completed."""

    job = await container.jobs.get_job(job_id)
    if job is None:
        raise NotFoundError("Job not found", details={"job_id": job_id})

    return create_success_response(data=job.model_dump(mode="json"))
