from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from helpdesk.config.logging import get_logger
from helpdesk.infra.container import ServiceContainer, get_container
from helpdesk.infra.database import Database
from helpdesk.v1.core.exceptions import create_success_response
from helpdesk.v1.infra.jobs.schemas import QueueStats

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    backend: str
    handlers: list[str]
    queues: dict[str, QueueStats]
    error: str | None = None


@router.get("/healthz", response_model=dict)
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Health check with database connectivity and per-type queue depth."""

    settings = container.settings
    timestamp = datetime.now(UTC).isoformat()
    overall_ok = True

    db_health = await _check_database_health(container.database)
    if not db_health.connected:
        overall_ok = False

    # Queue stats failure doesn't fail overall health
    queue_health = QueueHealth(
        backend=settings.job_backend.value,
        handlers=container.registry.list(),
        queues={},
    )
    try:
        queue_health.queues = await container.jobs.stats()
    except Exception as e:
        logger.warning("Queue health check failed", error=str(e))
        queue_health.error = str(e)

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "jobs": queue_health.model_dump(),
    }

    return create_success_response(data=health_data)


async def _check_database_health(database: Database) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        async with database.SessionLocal() as session:
            await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))
