from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infra.database import Base, UTCDateTime


class TicketStatus(str, Enum):
    NEW = "NEW"
    OPEN = "OPEN"
    WAITING_ON_CUSTOMER = "WAITING_ON_CUSTOMER"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


OPEN_STATUSES = (
    TicketStatus.NEW,
    TicketStatus.OPEN,
    TicketStatus.WAITING_ON_CUSTOMER,
    TicketStatus.IN_PROGRESS,
)


class TicketPriority(str, Enum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


class TicketCategory(str, Enum):
    INCIDENT = "INCIDENT"
    SERVICE_REQUEST = "SERVICE_REQUEST"
    CHANGE_REQUEST = "CHANGE_REQUEST"


class ScanStatus(str, Enum):
    PENDING = "PENDING"
    SCANNING = "SCANNING"
    CLEAN = "CLEAN"
    INFECTED = "INFECTED"
    ERROR = "ERROR"


class OutboxStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    """Mixin for timestamp fields."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Organization(Base, TimestampMixin):
    """Organization entity - top-level tenant boundary."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sla_policy: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment='Per-priority targets in hours: {"P1": {"response": 1, "resolution": 4}}',
    )


class User(Base, TimestampMixin):
    """User entity. Internal users are agents eligible for assignment."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Ticket(Base, TimestampMixin):
    """Support ticket, scoped to one organization."""

    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    key: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    org_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False
    )
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=TicketStatus.NEW.value
    )
    priority: Mapped[str] = mapped_column(
        String(8), nullable=False, default=TicketPriority.P3.value
    )
    category: Mapped[str] = mapped_column(
        String(32), nullable=False, default=TicketCategory.SERVICE_REQUEST.value
    )
    assignee_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    # SLA
    sla_response_target_hours: Mapped[int | None] = mapped_column(nullable=True)
    sla_resolution_target_hours: Mapped[int | None] = mapped_column(nullable=True)
    sla_paused_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    sla_warning_level: Mapped[str | None] = mapped_column(
        String(16), comment="Highest SLA warning threshold already notified"
    )
    first_response_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("ix_tickets_org_status", "org_id", "status"),
        Index("ix_tickets_org_assignee", "org_id", "assignee_id"),
    )


class TicketTag(Base):
    __tablename__ = "ticket_tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class TicketTagAssignment(Base):
    __tablename__ = "ticket_tag_assignments"

    ticket_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tickets.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ticket_tags.id", ondelete="CASCADE"), primary_key=True
    )


class Attachment(Base, TimestampMixin):
    """File attached to a ticket, with its virus-scan state."""

    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    scan_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ScanStatus.PENDING.value
    )
    scan_result: Mapped[str | None] = mapped_column(Text)
    scanned_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    is_quarantined: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    org_id: Mapped[str | None] = mapped_column(String(36), index=True)
    ticket_id: Mapped[str | None] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, nullable=False, index=True
    )


class EmailOutboxEntry(Base):
    """One delivery attempt of an outgoing email."""

    __tablename__ = "email_outbox"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    to: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, nullable=False
    )

    __table_args__ = (Index("ix_email_outbox_dedupe", "to", "subject", "created_at"),)
