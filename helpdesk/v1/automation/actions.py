"""
Automation action execution.

Actions run in list order and independently of each other: a failing
action is logged and the next one still runs. There is no rollback.
"""

import html
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from helpdesk.config.logging import get_logger
from helpdesk.v1.automation.schemas import (
    Action,
    AddTag,
    AssignRoundRobin,
    AssignTo,
    NotifyAssignee,
    NotifyTeam,
    RemoveTag,
    SetCategory,
    SetPriority,
    SetStatus,
)
from helpdesk.v1.infra.jobs.models import JobType
from helpdesk.v1.tickets.schemas import TicketChanges, UserRef
from helpdesk.v1.tickets.store import TicketStore

if TYPE_CHECKING:
    from helpdesk.v1.infra.jobs.service import JobService

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActionContext:
    ticket_id: str
    org_id: str
    user_id: str | None = None


class ActionExecutor:
    """Applies actions to ticket storage and, for notifications, the job queue."""

    def __init__(self, tickets: TicketStore, jobs: "JobService | None" = None):
        self.tickets = tickets
        self.jobs = jobs

    async def execute_action(self, action: Action, ctx: ActionContext) -> None:
        match action:
            case SetStatus(value=status):
                await self.tickets.update_ticket(ctx.ticket_id, TicketChanges(status=status))
            case SetPriority(value=priority):
                await self.tickets.update_ticket(
                    ctx.ticket_id, TicketChanges(priority=priority)
                )
            case SetCategory(value=category):
                await self.tickets.update_ticket(
                    ctx.ticket_id, TicketChanges(category=category)
                )
            case AssignTo(value=user_id):
                await self.tickets.update_ticket(
                    ctx.ticket_id, TicketChanges(assignee_id=user_id)
                )
            case AssignRoundRobin():
                await self.assign_round_robin(ctx)
            case AddTag(value=name):
                await self.tickets.add_tag(ctx.ticket_id, name)
            case RemoveTag(value=name):
                await self.tickets.remove_tag(ctx.ticket_id, name)
            case NotifyAssignee(value=message):
                await self.notify_assignee(ctx, message)
            case NotifyTeam(value=recipients):
                await self.notify_team(ctx, recipients)
            case _:
                raise ValueError(f"Unsupported action type: {action.type}")

    async def execute_actions(self, actions: Sequence[Action], ctx: ActionContext) -> int:
        """Run every action; returns how many completed without raising."""
        succeeded = 0
        for action in actions:
            try:
                await self.execute_action(action, ctx)
                succeeded += 1
            except Exception:
                logger.exception(
                    "Automation action failed",
                    action_type=action.type,
                    ticket_id=ctx.ticket_id,
                    org_id=ctx.org_id,
                )
        return succeeded

    async def pick_least_loaded(self, org_id: str) -> UserRef | None:
        """
        Internal user with the fewest open tickets assigned in ``org_id``.

        Ties go to the first user in iteration order. The counts are read
        without a lock, so concurrent firings may pick the same user.
        """
        users = await self.tickets.list_internal_users()
        best: UserRef | None = None
        best_count = 0
        for user in users:
            count = await self.tickets.count_open_assigned(org_id, user.id)
            if best is None or count < best_count:
                best, best_count = user, count
        return best

    async def assign_round_robin(self, ctx: ActionContext) -> None:
        user = await self.pick_least_loaded(ctx.org_id)
        if user is None:
            logger.info("No internal users for round-robin", ticket_id=ctx.ticket_id)
            return
        await self.tickets.update_ticket(ctx.ticket_id, TicketChanges(assignee_id=user.id))
        logger.debug("Ticket assigned round-robin", ticket_id=ctx.ticket_id, user_id=user.id)

    async def notify_assignee(self, ctx: ActionContext, message: str | None) -> None:
        if self.jobs is None:
            logger.info("Notification skipped, no job queue", ticket_id=ctx.ticket_id)
            return

        ticket = await self.tickets.get_ticket(ctx.ticket_id)
        if ticket is None or ticket.assignee_id is None:
            return
        assignee = await self.tickets.get_user(ticket.assignee_id)
        if assignee is None or not assignee.email:
            return

        await self.jobs.enqueue(
            JobType.SEND_EMAIL,
            {
                "to": assignee.email,
                "subject": f"Ticket {ticket.key} needs your attention: {ticket.subject}",
                "html": f"<p>{html.escape(message or 'An automation rule flagged this ticket.')}</p>",
                "text": message,
            },
        )

    async def notify_team(self, ctx: ActionContext, recipients: list[str] | None) -> None:
        if self.jobs is None:
            logger.info("Notification skipped, no job queue", ticket_id=ctx.ticket_id)
            return

        ticket = await self.tickets.get_ticket(ctx.ticket_id)
        if ticket is None:
            return
        if not recipients:
            recipients = [u.email for u in await self.tickets.list_internal_users()]

        for email in recipients:
            await self.jobs.enqueue(
                JobType.SEND_EMAIL,
                {
                    "to": email,
                    "subject": f"Ticket {ticket.key}: {ticket.subject}",
                    "html": f"<p>Ticket {html.escape(ticket.key)} matched an automation rule.</p>",
                },
            )
