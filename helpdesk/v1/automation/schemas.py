"""
Automation rule schemas.

Conditions and actions are closed tagged unions on ``type``; rules stored
with an unknown condition or action type fail validation on load.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from helpdesk.v1.tickets.models import TicketCategory, TicketPriority, TicketStatus
from helpdesk.v1.tickets.schemas import TicketSnapshot


class TriggerOn(str, Enum):
    TICKET_CREATED = "TICKET_CREATED"
    TICKET_UPDATED = "TICKET_UPDATED"
    COMMENT_ADDED = "COMMENT_ADDED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PRIORITY_CHANGED = "PRIORITY_CHANGED"
    ASSIGNED = "ASSIGNED"
    UNASSIGNED = "UNASSIGNED"


@dataclass(frozen=True)
class TicketContext:
    """Read-only ticket snapshot plus its tag names, fetched once per pass."""

    ticket: TicketSnapshot
    tags: list[str] = field(default_factory=list)


# Conditions


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def evaluate(self, ctx: TicketContext) -> bool:
        raise NotImplementedError


class StatusEquals(_Condition):
    type: Literal["status_equals"] = "status_equals"
    value: TicketStatus

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.status == self.value


class StatusIn(_Condition):
    type: Literal["status_in"] = "status_in"
    value: list[TicketStatus]

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.status in self.value


class PriorityEquals(_Condition):
    type: Literal["priority_equals"] = "priority_equals"
    value: TicketPriority

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.priority == self.value


class PriorityIn(_Condition):
    type: Literal["priority_in"] = "priority_in"
    value: list[TicketPriority]

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.priority in self.value


class CategoryEquals(_Condition):
    type: Literal["category_equals"] = "category_equals"
    value: TicketCategory

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.category == self.value


class AssigneeIs(_Condition):
    type: Literal["assignee_is"] = "assignee_is"
    value: str

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.assignee_id == self.value


class AssigneeIsNull(_Condition):
    type: Literal["assignee_is_null"] = "assignee_is_null"
    value: None = None

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.assignee_id is None


class SubjectContains(_Condition):
    type: Literal["subject_contains"] = "subject_contains"
    value: str

    def evaluate(self, ctx: TicketContext) -> bool:
        return self.value.lower() in ctx.ticket.subject.lower()


class DescriptionContains(_Condition):
    type: Literal["description_contains"] = "description_contains"
    value: str

    def evaluate(self, ctx: TicketContext) -> bool:
        return self.value.lower() in (ctx.ticket.description or "").lower()


class TagEquals(_Condition):
    type: Literal["tag_equals"] = "tag_equals"
    value: str

    def evaluate(self, ctx: TicketContext) -> bool:
        return self.value in ctx.tags


class _DateCondition(_Condition):
    value: datetime

    @field_validator("value")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=UTC)


class CreatedAfter(_DateCondition):
    type: Literal["created_after"] = "created_after"

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.created_at >= self.value


class CreatedBefore(_DateCondition):
    type: Literal["created_before"] = "created_before"

    def evaluate(self, ctx: TicketContext) -> bool:
        return ctx.ticket.created_at <= self.value


Condition = Annotated[
    Union[
        StatusEquals,
        StatusIn,
        PriorityEquals,
        PriorityIn,
        CategoryEquals,
        AssigneeIs,
        AssigneeIsNull,
        SubjectContains,
        DescriptionContains,
        TagEquals,
        CreatedAfter,
        CreatedBefore,
    ],
    Field(discriminator="type"),
]


# Actions


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SetStatus(_Action):
    type: Literal["set_status"] = "set_status"
    value: TicketStatus


class SetPriority(_Action):
    type: Literal["set_priority"] = "set_priority"
    value: TicketPriority


class SetCategory(_Action):
    type: Literal["set_category"] = "set_category"
    value: TicketCategory


class AssignTo(_Action):
    type: Literal["assign_to"] = "assign_to"
    value: str


class AssignRoundRobin(_Action):
    type: Literal["assign_to_round_robin"] = "assign_to_round_robin"
    value: None = None


class AddTag(_Action):
    type: Literal["add_tag"] = "add_tag"
    value: str = Field(min_length=1, max_length=100)


class RemoveTag(_Action):
    type: Literal["remove_tag"] = "remove_tag"
    value: str = Field(min_length=1, max_length=100)


class NotifyAssignee(_Action):
    type: Literal["notify_assignee"] = "notify_assignee"
    value: str | None = Field(default=None, description="Optional message body")


class NotifyTeam(_Action):
    type: Literal["notify_team"] = "notify_team"
    value: list[str] | None = Field(
        default=None, description="Recipient emails; every internal user when empty"
    )


Action = Annotated[
    Union[
        SetStatus,
        SetPriority,
        SetCategory,
        AssignTo,
        AssignRoundRobin,
        AddTag,
        RemoveTag,
        NotifyAssignee,
        NotifyTeam,
    ],
    Field(discriminator="type"),
]

conditions_adapter: TypeAdapter[list[Condition]] = TypeAdapter(list[Condition])
actions_adapter: TypeAdapter[list[Action]] = TypeAdapter(list[Action])


# Rules


class AutomationRule(BaseModel):
    """A tenant-scoped condition -> action binding."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    name: str
    enabled: bool = True
    priority: int = 0
    trigger_on: TriggerOn
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class AutomationRuleCreate(BaseModel):
    """Schema for creating automation rules."""

    name: str = Field(..., min_length=1, max_length=200)
    enabled: bool = True
    priority: int = Field(default=0, ge=0, description="Higher runs first")
    trigger_on: TriggerOn
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)


class AutomationRuleUpdate(BaseModel):
    """Schema for partial rule updates; unset fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    enabled: bool | None = None
    priority: int | None = Field(default=None, ge=0)
    trigger_on: TriggerOn | None = None
    conditions: list[Condition] | None = None
    actions: list[Action] | None = None


class RuleRunResult(BaseModel):
    matched: int = 0
    executed: int = 0
