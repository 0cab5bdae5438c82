"""
SQLAlchemy-backed ticket storage used by automation actions and job handlers.

Each store opens a short-lived session per call; none of the reads are
held in a transaction with the writes that follow them.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.v1.tickets.models import (
    OPEN_STATUSES,
    Attachment,
    AuditLog,
    EmailOutboxEntry,
    OutboxStatus,
    Organization,
    Ticket,
    TicketTag,
    TicketTagAssignment,
    User,
)
from helpdesk.v1.tickets.schemas import (
    AttachmentSnapshot,
    TicketChanges,
    TicketFilters,
    TicketSnapshot,
    UserRef,
)


class TicketStore(Protocol):
    """Ticket reads and writes needed by automation and handlers."""

    async def get_ticket(self, ticket_id: str) -> TicketSnapshot | None: ...

    async def get_tag_names(self, ticket_id: str) -> list[str]: ...

    async def update_ticket(self, ticket_id: str, changes: TicketChanges) -> None: ...

    async def add_tag(self, ticket_id: str, tag_name: str) -> None: ...

    async def remove_tag(self, ticket_id: str, tag_name: str) -> None: ...

    async def get_user(self, user_id: str) -> UserRef | None: ...

    async def list_internal_users(self) -> list[UserRef]: ...

    async def count_open_assigned(self, org_id: str, user_id: str) -> int: ...


class SqlTicketStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_ticket(self, ticket_id: str) -> TicketSnapshot | None:
        async with self._session_factory() as session:
            ticket = await session.get(Ticket, ticket_id)
            return TicketSnapshot.model_validate(ticket) if ticket else None

    async def get_tag_names(self, ticket_id: str) -> list[str]:
        query = (
            select(TicketTag.name)
            .join(TicketTagAssignment, TicketTagAssignment.tag_id == TicketTag.id)
            .where(TicketTagAssignment.ticket_id == ticket_id)
            .order_by(TicketTag.name)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars())

    async def get_tags_for_tickets(self, ticket_ids: list[str]) -> dict[str, list[str]]:
        if not ticket_ids:
            return {}
        query = (
            select(TicketTagAssignment.ticket_id, TicketTag.name)
            .join(TicketTag, TicketTagAssignment.tag_id == TicketTag.id)
            .where(TicketTagAssignment.ticket_id.in_(ticket_ids))
            .order_by(TicketTag.name)
        )
        tags: dict[str, list[str]] = {tid: [] for tid in ticket_ids}
        async with self._session_factory() as session:
            for ticket_id, name in await session.execute(query):
                tags[ticket_id].append(name)
        return tags

    async def update_ticket(self, ticket_id: str, changes: TicketChanges) -> None:
        values = changes.as_values()
        if not values:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id)
                .values(**values)
            )
            await session.commit()

    async def add_tag(self, ticket_id: str, tag_name: str) -> None:
        async with self._session_factory() as session:
            tag = await session.scalar(select(TicketTag).where(TicketTag.name == tag_name))
            if tag is None:
                tag = TicketTag(name=tag_name)
                session.add(tag)
                await session.flush()

            existing = await session.get(TicketTagAssignment, (ticket_id, tag.id))
            if existing is None:
                session.add(TicketTagAssignment(ticket_id=ticket_id, tag_id=tag.id))
            await session.commit()

    async def remove_tag(self, ticket_id: str, tag_name: str) -> None:
        async with self._session_factory() as session:
            tag_id = await session.scalar(
                select(TicketTag.id).where(TicketTag.name == tag_name)
            )
            if tag_id is None:
                return
            await session.execute(
                delete(TicketTagAssignment).where(
                    TicketTagAssignment.ticket_id == ticket_id,
                    TicketTagAssignment.tag_id == tag_id,
                )
            )
            await session.commit()

    async def get_user(self, user_id: str) -> UserRef | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            return UserRef.model_validate(user) if user else None

    async def list_internal_users(self) -> list[UserRef]:
        query = select(User).where(User.is_internal.is_(True)).order_by(User.created_at, User.id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [UserRef.model_validate(u) for u in result.scalars()]

    async def count_open_assigned(self, org_id: str, user_id: str) -> int:
        query = select(func.count(Ticket.id)).where(
            Ticket.org_id == org_id,
            Ticket.assignee_id == user_id,
            Ticket.status.in_([s.value for s in OPEN_STATUSES]),
        )
        async with self._session_factory() as session:
            return (await session.scalar(query)) or 0

    async def list_tickets(
        self, filters: TicketFilters, limit: int | None = None
    ) -> list[TicketSnapshot]:
        """Tickets matching ``filters``, newest first."""
        query = select(Ticket).where(*self._conditions(filters)).order_by(
            Ticket.created_at.desc()
        )
        if limit is not None:
            query = query.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [TicketSnapshot.model_validate(t) for t in result.scalars()]

    async def list_tickets_for_sla(
        self, ticket_ids: list[str] | None = None, org_id: str | None = None
    ) -> list[TicketSnapshot]:
        conditions = []
        if ticket_ids:
            conditions.append(Ticket.id.in_(ticket_ids))
        if org_id:
            conditions.append(Ticket.org_id == org_id)
        async with self._session_factory() as session:
            result = await session.execute(select(Ticket).where(*conditions))
            return [TicketSnapshot.model_validate(t) for t in result.scalars()]

    async def list_open_unpaused(self, org_id: str | None = None) -> list[TicketSnapshot]:
        conditions = [
            Ticket.status.in_([s.value for s in OPEN_STATUSES]),
            Ticket.sla_paused_at.is_(None),
        ]
        if org_id:
            conditions.append(Ticket.org_id == org_id)
        async with self._session_factory() as session:
            result = await session.execute(select(Ticket).where(*conditions))
            return [TicketSnapshot.model_validate(t) for t in result.scalars()]

    async def get_sla_policy(self, org_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            return await session.scalar(
                select(Organization.sla_policy).where(Organization.id == org_id)
            )

    async def set_sla_targets(
        self, ticket_id: str, response_hours: int, resolution_hours: int
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id)
                .values(
                    sla_response_target_hours=response_hours,
                    sla_resolution_target_hours=resolution_hours,
                )
            )
            await session.commit()

    async def set_sla_warning_level(self, ticket_id: str, level: str) -> None:
        # Not an edit of the ticket itself, so updated_at is left alone
        async with self._session_factory() as session:
            await session.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id)
                .values(sla_warning_level=level, updated_at=Ticket.updated_at)
            )
            await session.commit()

    @staticmethod
    def _conditions(filters: TicketFilters) -> list:
        conditions = []
        if filters.org_id:
            conditions.append(Ticket.org_id == filters.org_id)
        if filters.status:
            conditions.append(Ticket.status.in_([s.value for s in filters.status]))
        if filters.priority:
            conditions.append(Ticket.priority.in_([p.value for p in filters.priority]))
        if filters.category:
            conditions.append(Ticket.category == filters.category.value)
        if filters.assignee_id:
            conditions.append(Ticket.assignee_id == filters.assignee_id)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(Ticket.subject).like(pattern),
                    func.lower(Ticket.description).like(pattern),
                )
            )
        if filters.created_from:
            conditions.append(Ticket.created_at >= filters.created_from)
        if filters.created_to:
            conditions.append(Ticket.created_at <= filters.created_to)
        return conditions


class SqlAttachmentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, attachment_id: str) -> AttachmentSnapshot | None:
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, attachment_id)
            return AttachmentSnapshot.model_validate(attachment) if attachment else None

    async def update_scan(self, attachment_id: str, **values: Any) -> None:
        values = {k: getattr(v, "value", v) for k, v in values.items()}
        async with self._session_factory() as session:
            await session.execute(
                update(Attachment).where(Attachment.id == attachment_id).values(**values)
            )
            await session.commit()


class SqlAuditLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        action: str,
        org_id: str | None = None,
        ticket_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                AuditLog(
                    action=action,
                    org_id=org_id,
                    ticket_id=ticket_id,
                    details=details or {},
                )
            )
            await session.commit()

    async def delete_before(self, cutoff: datetime, org_id: str | None = None) -> int:
        conditions = [AuditLog.created_at < cutoff]
        if org_id:
            conditions.append(AuditLog.org_id == org_id)
        async with self._session_factory() as session:
            result = await session.execute(delete(AuditLog).where(*conditions))
            await session.commit()
            return result.rowcount or 0


class SqlEmailOutbox:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def was_sent_since(self, to: str, subject: str, since: datetime) -> bool:
        query = select(func.count(EmailOutboxEntry.id)).where(
            and_(
                EmailOutboxEntry.to == to,
                EmailOutboxEntry.subject == subject,
                EmailOutboxEntry.status == OutboxStatus.SENT.value,
                EmailOutboxEntry.created_at >= since,
            )
        )
        async with self._session_factory() as session:
            return ((await session.scalar(query)) or 0) > 0

    async def record(
        self,
        email_type: str,
        to: str,
        subject: str,
        status: OutboxStatus,
        error: str | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                EmailOutboxEntry(
                    type=email_type,
                    to=to,
                    subject=subject,
                    status=status.value,
                    error=error,
                )
            )
            await session.commit()


class TicketQueryStore(TicketStore, Protocol):
    """Ticket storage as seen by report, SLA and export handlers."""

    async def get_tags_for_tickets(self, ticket_ids: list[str]) -> dict[str, list[str]]: ...

    async def list_tickets(
        self, filters: TicketFilters, limit: int | None = None
    ) -> list[TicketSnapshot]: ...

    async def list_tickets_for_sla(
        self, ticket_ids: list[str] | None = None, org_id: str | None = None
    ) -> list[TicketSnapshot]: ...

    async def list_open_unpaused(self, org_id: str | None = None) -> list[TicketSnapshot]: ...

    async def get_sla_policy(self, org_id: str) -> dict[str, Any] | None: ...

    async def set_sla_targets(
        self, ticket_id: str, response_hours: int, resolution_hours: int
    ) -> None: ...

    async def set_sla_warning_level(self, ticket_id: str, level: str) -> None: ...
