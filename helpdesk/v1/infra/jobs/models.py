"""
Job system enums and SQLAlchemy tables for the database-backed queue.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, Index, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infra.database import Base, UTCDateTime


class JobType(str, Enum):
    """Closed set of deferred work kinds understood by this deployment."""

    SEND_EMAIL = "SEND_EMAIL"
    GENERATE_EXPORT = "GENERATE_EXPORT"
    GENERATE_ORG_EXPORT = "GENERATE_ORG_EXPORT"
    RECALCULATE_SLA = "RECALCULATE_SLA"
    PROCESS_ATTACHMENT = "PROCESS_ATTACHMENT"
    AUDIT_COMPACTION = "AUDIT_COMPACTION"
    SLA_WARNING_CHECK = "SLA_WARNING_CHECK"


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class QueueName(str, Enum):
    """Per-type lists a job id can sit on."""

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# SQLite only autoincrements INTEGER PRIMARY KEY
_QueueEntryId = BigInteger().with_variant(Integer, "sqlite")


class JobRow(Base):
    """Durable job record, addressable by id. ``record`` holds the full job."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="Job type identifier"
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="PENDING|PROCESSING|COMPLETED|FAILED"
    )
    record: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, comment="Serialized job including payload and result"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )


class JobQueueEntry(Base):
    """
    One job id on one per-type list.

    FIFO order is the entry id; popping deletes the lowest id and only
    counts as a claim when the delete actually removed the row.
    """

    __tablename__ = "job_queue_entries"

    id: Mapped[int] = mapped_column(_QueueEntryId, primary_key=True, autoincrement=True)
    queue: Mapped[str] = mapped_column(String(16), nullable=False)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False)
    enqueued_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_job_queue_entries_lookup", "queue", "job_type", "id"),
        Index("ix_job_queue_entries_job", "queue", "job_type", "job_id"),
    )


class FailedJob(Base):
    """Dead-letter archive: one row per job that exhausted its attempts."""

    __tablename__ = "failed_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    max_attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    failed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, index=True
    )
    retried_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
