"""
Job system Pydantic schemas.

Each job type carries its own payload model; ``Job`` is a tagged union on
``type`` so a handler receives exactly its own variant.
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from helpdesk.v1.infra.jobs.models import JobStatus, JobType

# Payloads


class JobPayload(BaseModel):
    """Type-specific job data; immutable once enqueued."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class SendEmailData(JobPayload):
    type: str = Field(default="notification", description="Email category")
    to: str
    subject: str
    html: str
    text: str | None = None


class GenerateExportData(JobPayload):
    format: Literal["CSV", "JSON"]
    filters: dict[str, Any] = Field(default_factory=dict)
    user_id: str
    org_id: str | None = None


class GenerateOrgExportData(JobPayload):
    export_request_id: str
    org_id: str
    requested_by_id: str


class RecalculateSLAData(JobPayload):
    ticket_ids: list[str] | None = None
    org_id: str | None = None


class ProcessAttachmentData(JobPayload):
    attachment_id: str
    action: Literal["SCAN", "GENERATE_THUMBNAIL"] = "SCAN"


class AuditCompactionData(JobPayload):
    org_id: str | None = None
    retention_days: int = Field(ge=1)


class SLAWarningCheckData(JobPayload):
    org_id: str | None = None


# Job records


class JobBase(BaseModel):
    """Fields shared by every job regardless of type."""

    id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    retry_at: datetime | None = Field(
        default=None, description="Earliest time the job may be processed again"
    )
    result: Any = None


class SendEmailJob(JobBase):
    type: Literal["SEND_EMAIL"] = "SEND_EMAIL"
    data: SendEmailData


class GenerateExportJob(JobBase):
    type: Literal["GENERATE_EXPORT"] = "GENERATE_EXPORT"
    data: GenerateExportData


class GenerateOrgExportJob(JobBase):
    type: Literal["GENERATE_ORG_EXPORT"] = "GENERATE_ORG_EXPORT"
    data: GenerateOrgExportData


class RecalculateSLAJob(JobBase):
    type: Literal["RECALCULATE_SLA"] = "RECALCULATE_SLA"
    data: RecalculateSLAData


class ProcessAttachmentJob(JobBase):
    type: Literal["PROCESS_ATTACHMENT"] = "PROCESS_ATTACHMENT"
    data: ProcessAttachmentData


class AuditCompactionJob(JobBase):
    type: Literal["AUDIT_COMPACTION"] = "AUDIT_COMPACTION"
    data: AuditCompactionData


class SLAWarningCheckJob(JobBase):
    type: Literal["SLA_WARNING_CHECK"] = "SLA_WARNING_CHECK"
    data: SLAWarningCheckData


Job = Annotated[
    Union[
        SendEmailJob,
        GenerateExportJob,
        GenerateOrgExportJob,
        RecalculateSLAJob,
        ProcessAttachmentJob,
        AuditCompactionJob,
        SLAWarningCheckJob,
    ],
    Field(discriminator="type"),
]

job_adapter: TypeAdapter[Job] = TypeAdapter(Job)


class JobResult(BaseModel):
    """Uniform handler outcome routed by the worker to complete/fail."""

    success: bool
    error: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "JobResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "JobResult":
        return cls(success=False, error=error)


# Dead letter


class FailedJobRecord(BaseModel):
    """Queryable copy of a job that exhausted its retries."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    type: JobType
    data: dict[str, Any]
    error: str
    attempts: int
    max_attempts: int
    failed_at: datetime
    retried_at: datetime | None = None


class FailedJobFilters(BaseModel):
    """Schema for dead-letter listing filters."""

    type: JobType | None = Field(default=None, description="Filter by job type")
    date_from: datetime | None = Field(
        default=None, description="Only records failed at or after this time"
    )
    date_to: datetime | None = Field(
        default=None, description="Only records failed at or before this time"
    )
    limit: int = Field(
        default=50, ge=1, le=1000, description="Maximum results to return"
    )
    offset: int = Field(default=0, ge=0, description="Results offset for pagination")

    @field_validator("date_from", "date_to")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class FailedJobListResponse(BaseModel):
    """Schema for dead-letter list API response."""

    jobs: list[FailedJobRecord]
    total: int
    limit: int
    offset: int


# API


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: JobType = Field(..., description="Job type")
    data: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    max_attempts: int | None = Field(
        default=None, ge=1, le=50, description="Attempt ceiling override"
    )


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING


class QueueStats(BaseModel):
    """Depth of each per-type list."""

    pending: int
    processing: int
    failed: int
    processed: int | None = None
