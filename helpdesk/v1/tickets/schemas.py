"""
Read-only views of ticket storage handed to automation and job handlers.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from helpdesk.v1.tickets.models import (
    ScanStatus,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)


class TicketSnapshot(BaseModel):
    """Point-in-time copy of a ticket's fields."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    org_id: str
    key: str
    subject: str
    description: str = ""
    status: TicketStatus
    priority: TicketPriority
    category: TicketCategory
    assignee_id: str | None = None
    created_at: datetime
    updated_at: datetime
    sla_response_target_hours: int | None = None
    sla_resolution_target_hours: int | None = None
    sla_paused_at: datetime | None = None
    sla_warning_level: str | None = None
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None


class UserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    email: str
    name: str | None = None
    is_internal: bool = False


class AttachmentSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    ticket_id: str
    filename: str
    storage_key: str
    scan_status: ScanStatus
    scan_result: str | None = None
    scanned_at: datetime | None = None
    is_quarantined: bool = False


class TicketFilters(BaseModel):
    """Filters accepted by ticket listings and report exports."""

    model_config = ConfigDict(extra="ignore")

    org_id: str | None = None
    status: list[TicketStatus] | None = None
    priority: list[TicketPriority] | None = None
    category: TicketCategory | None = None
    assignee_id: str | None = None
    search: str | None = Field(
        default=None, description="Case-insensitive match on subject or description"
    )
    created_from: datetime | None = None
    created_to: datetime | None = None


class TicketChanges(BaseModel):
    """Fields an automation action may write."""

    model_config = ConfigDict(extra="forbid")

    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category: TicketCategory | None = None
    assignee_id: str | None = None

    def as_values(self) -> dict[str, Any]:
        return {
            k: (v.value if hasattr(v, "value") else v)
            for k, v in self.model_dump(exclude_unset=True).items()
        }
