"""
Automation rule storage, management and the rule engine entry points.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.config.logging import get_logger
from helpdesk.v1.automation.actions import ActionContext, ActionExecutor
from helpdesk.v1.automation.conditions import evaluate_conditions
from helpdesk.v1.automation.models import AutomationRuleRow
from helpdesk.v1.automation.schemas import (
    AutomationRule,
    AutomationRuleCreate,
    AutomationRuleUpdate,
    RuleRunResult,
    TicketContext,
    TriggerOn,
)
from helpdesk.v1.core.exceptions import NotFoundError
from helpdesk.v1.tickets.schemas import TicketSnapshot
from helpdesk.v1.tickets.store import TicketStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RuleStore(Protocol):
    async def list_enabled(self, org_id: str, trigger_on: TriggerOn) -> list[AutomationRule]: ...

    async def list_rules(self, org_id: str) -> list[AutomationRule]: ...

    async def get(self, org_id: str, rule_id: str) -> AutomationRule | None: ...

    async def create(
        self, org_id: str, rule: AutomationRuleCreate, created_by: str | None = None
    ) -> AutomationRule: ...

    async def update(
        self, org_id: str, rule_id: str, changes: AutomationRuleUpdate
    ) -> AutomationRule | None: ...

    async def delete(self, org_id: str, rule_id: str) -> bool: ...


def _by_priority(rules: list[AutomationRule]) -> list[AutomationRule]:
    # sorted() is stable, so equal priorities keep storage order
    return sorted(rules, key=lambda r: r.priority, reverse=True)


class InMemoryRuleStore:
    """Rule store kept in process memory, in insertion order."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._rules: dict[str, AutomationRule] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def list_enabled(self, org_id: str, trigger_on: TriggerOn) -> list[AutomationRule]:
        async with self._lock:
            rules = [
                r
                for r in self._rules.values()
                if r.org_id == org_id and r.enabled and r.trigger_on == trigger_on
            ]
        return _by_priority(rules)

    async def list_rules(self, org_id: str) -> list[AutomationRule]:
        async with self._lock:
            rules = [r for r in self._rules.values() if r.org_id == org_id]
        return _by_priority(rules)

    async def get(self, org_id: str, rule_id: str) -> AutomationRule | None:
        rule = self._rules.get(rule_id)
        return rule if rule is not None and rule.org_id == org_id else None

    async def create(
        self, org_id: str, rule: AutomationRuleCreate, created_by: str | None = None
    ) -> AutomationRule:
        now = self._clock()
        stored = AutomationRule(
            id=str(uuid.uuid4()),
            org_id=org_id,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **rule.model_dump(exclude={"conditions", "actions"}),
            conditions=rule.conditions,
            actions=rule.actions,
        )
        async with self._lock:
            self._rules[stored.id] = stored
        return stored

    async def update(
        self, org_id: str, rule_id: str, changes: AutomationRuleUpdate
    ) -> AutomationRule | None:
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None or rule.org_id != org_id:
                return None
            updates = {
                name: getattr(changes, name)
                for name in changes.model_fields_set
                if getattr(changes, name) is not None
            }
            updated = rule.model_copy(update={**updates, "updated_at": self._clock()})
            self._rules[rule_id] = updated
            return updated

    async def delete(self, org_id: str, rule_id: str) -> bool:
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None or rule.org_id != org_id:
                return False
            del self._rules[rule_id]
            return True


class SqlRuleStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_enabled(self, org_id: str, trigger_on: TriggerOn) -> list[AutomationRule]:
        query = (
            select(AutomationRuleRow)
            .where(
                AutomationRuleRow.org_id == org_id,
                AutomationRuleRow.enabled.is_(True),
                AutomationRuleRow.trigger_on == trigger_on.value,
            )
            .order_by(
                AutomationRuleRow.priority.desc(),
                AutomationRuleRow.created_at,
                AutomationRuleRow.id,
            )
        )
        return await self._fetch(query)

    async def list_rules(self, org_id: str) -> list[AutomationRule]:
        query = (
            select(AutomationRuleRow)
            .where(AutomationRuleRow.org_id == org_id)
            .order_by(AutomationRuleRow.priority.desc(), AutomationRuleRow.created_at)
        )
        return await self._fetch(query)

    async def get(self, org_id: str, rule_id: str) -> AutomationRule | None:
        async with self._session_factory() as session:
            row = await session.get(AutomationRuleRow, rule_id)
            if row is None or row.org_id != org_id:
                return None
            return AutomationRule.model_validate(row)

    async def create(
        self, org_id: str, rule: AutomationRuleCreate, created_by: str | None = None
    ) -> AutomationRule:
        data = rule.model_dump(mode="json")
        row = AutomationRuleRow(org_id=org_id, created_by=created_by, **data)
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return AutomationRule.model_validate(row)

    async def update(
        self, org_id: str, rule_id: str, changes: AutomationRuleUpdate
    ) -> AutomationRule | None:
        async with self._session_factory() as session:
            row = await session.get(AutomationRuleRow, rule_id)
            if row is None or row.org_id != org_id:
                return None
            for name, value in changes.model_dump(
                mode="json", exclude_unset=True, exclude_none=True
            ).items():
                setattr(row, name, value)
            await session.commit()
            await session.refresh(row)
            return AutomationRule.model_validate(row)

    async def delete(self, org_id: str, rule_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AutomationRuleRow).where(
                    AutomationRuleRow.id == rule_id, AutomationRuleRow.org_id == org_id
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def _fetch(self, query) -> list[AutomationRule]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [AutomationRule.model_validate(row) for row in result.scalars()]


class AutomationRuleService:
    """Tenant-scoped rule management used by the API."""

    def __init__(self, store: RuleStore):
        self.store = store

    async def list_rules(self, org_id: str) -> list[AutomationRule]:
        return await self.store.list_rules(org_id)

    async def get_rule(self, org_id: str, rule_id: str) -> AutomationRule:
        rule = await self.store.get(org_id, rule_id)
        if rule is None:
            raise NotFoundError("Automation rule not found", details={"rule_id": rule_id})
        return rule

    async def create_rule(
        self, org_id: str, rule: AutomationRuleCreate, created_by: str | None = None
    ) -> AutomationRule:
        created = await self.store.create(org_id, rule, created_by)
        logger.info(
            "Automation rule created",
            rule_id=created.id,
            org_id=org_id,
            trigger_on=created.trigger_on.value,
        )
        return created

    async def update_rule(
        self, org_id: str, rule_id: str, changes: AutomationRuleUpdate
    ) -> AutomationRule:
        updated = await self.store.update(org_id, rule_id, changes)
        if updated is None:
            raise NotFoundError("Automation rule not found", details={"rule_id": rule_id})
        logger.info("Automation rule updated", rule_id=rule_id, org_id=org_id)
        return updated

    async def delete_rule(self, org_id: str, rule_id: str) -> None:
        if not await self.store.delete(org_id, rule_id):
            raise NotFoundError("Automation rule not found", details={"rule_id": rule_id})
        logger.info("Automation rule deleted", rule_id=rule_id, org_id=org_id)


class AutomationEngine:
    """
    Evaluates an org's enabled rules for a trigger and runs their actions.

    The trigger entry points never raise: automation must not fail the
    ticket mutation that fired it.
    """

    def __init__(self, rules: RuleStore, tickets: TicketStore, executor: ActionExecutor):
        self.rules = rules
        self.tickets = tickets
        self.executor = executor

    async def get_enabled_rules(
        self, org_id: str, trigger_on: TriggerOn
    ) -> list[AutomationRule]:
        """Enabled rules for ``org_id`` and ``trigger_on``, highest priority first."""
        return await self.rules.list_enabled(org_id, trigger_on)

    async def evaluate_and_execute(
        self,
        ticket: TicketSnapshot,
        trigger_on: TriggerOn,
        user_id: str | None = None,
    ) -> RuleRunResult:
        rules = await self.get_enabled_rules(ticket.org_id, trigger_on)
        if not rules:
            return RuleRunResult()

        tags = await self.tickets.get_tag_names(ticket.id)
        ctx = TicketContext(ticket=ticket, tags=tags)
        action_ctx = ActionContext(ticket_id=ticket.id, org_id=ticket.org_id, user_id=user_id)
        result = RuleRunResult()

        for rule in rules:
            try:
                if not evaluate_conditions(rule.conditions, ctx):
                    continue
                result.matched += 1
                await self.executor.execute_actions(rule.actions, action_ctx)
                result.executed += 1
            except Exception:
                logger.exception(
                    "Automation rule execution failed",
                    rule_id=rule.id,
                    ticket_id=ticket.id,
                )

        logger.info(
            "Automation rules evaluated",
            ticket_id=ticket.id,
            org_id=ticket.org_id,
            trigger_on=trigger_on.value,
            candidates=len(rules),
            matched=result.matched,
            executed=result.executed,
        )
        return result

    async def trigger(
        self,
        ticket: TicketSnapshot,
        trigger_on: TriggerOn,
        user_id: str | None = None,
    ) -> RuleRunResult:
        try:
            return await self.evaluate_and_execute(ticket, trigger_on, user_id)
        except Exception:
            logger.exception(
                "Automation trigger failed",
                ticket_id=ticket.id,
                trigger_on=trigger_on.value,
            )
            return RuleRunResult()

    async def trigger_on_ticket_create(
        self, ticket: TicketSnapshot, user_id: str | None = None
    ) -> RuleRunResult:
        return await self.trigger(ticket, TriggerOn.TICKET_CREATED, user_id)

    async def trigger_on_ticket_update(
        self, ticket: TicketSnapshot, user_id: str | None = None
    ) -> RuleRunResult:
        return await self.trigger(ticket, TriggerOn.TICKET_UPDATED, user_id)

    async def trigger_on_comment_add(
        self, ticket: TicketSnapshot, user_id: str | None = None
    ) -> RuleRunResult:
        return await self.trigger(ticket, TriggerOn.COMMENT_ADDED, user_id)

    async def trigger_on_ticket_change(
        self,
        before: TicketSnapshot,
        after: TicketSnapshot,
        user_id: str | None = None,
    ) -> dict[TriggerOn, RuleRunResult]:
        """Fire the field-change triggers implied by ``before`` -> ``after``."""
        fired: dict[TriggerOn, RuleRunResult] = {}
        for trigger_on in changed_triggers(before, after):
            fired[trigger_on] = await self.trigger(after, trigger_on, user_id)
        return fired


def changed_triggers(before: TicketSnapshot, after: TicketSnapshot) -> list[TriggerOn]:
    triggers = []
    if before.status != after.status:
        triggers.append(TriggerOn.STATUS_CHANGED)
    if before.priority != after.priority:
        triggers.append(TriggerOn.PRIORITY_CHANGED)
    if before.assignee_id != after.assignee_id:
        triggers.append(
            TriggerOn.UNASSIGNED if after.assignee_id is None else TriggerOn.ASSIGNED
        )
    return triggers
