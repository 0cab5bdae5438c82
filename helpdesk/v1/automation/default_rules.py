"""
Built-in automation rules created for new organizations.
"""

from helpdesk.config.logging import get_logger
from helpdesk.v1.automation.rules import AutomationRuleService
from helpdesk.v1.automation.schemas import AutomationRule, AutomationRuleCreate

logger = get_logger(__name__)

DEFAULT_RULES: list[AutomationRuleCreate] = [
    AutomationRuleCreate.model_validate(rule)
    for rule in [
        {
            "name": "High Priority for Incidents",
            "priority": 100,
            "trigger_on": "TICKET_CREATED",
            "conditions": [{"type": "category_equals", "value": "INCIDENT"}],
            "actions": [{"type": "set_priority", "value": "P1"}],
        },
        {
            "name": "Tag Finance-related Tickets",
            "priority": 50,
            "trigger_on": "TICKET_CREATED",
            "conditions": [{"type": "subject_contains", "value": "invoice"}],
            "actions": [{"type": "add_tag", "value": "finance"}],
        },
        {
            "name": "Tag Finance-related Tickets (Description)",
            "priority": 50,
            "trigger_on": "TICKET_CREATED",
            "conditions": [{"type": "description_contains", "value": "invoice"}],
            "actions": [{"type": "add_tag", "value": "finance"}],
        },
        {
            "name": "Auto-assign Unassigned Tickets",
            "priority": 10,
            "trigger_on": "TICKET_CREATED",
            "conditions": [{"type": "assignee_is_null", "value": None}],
            "actions": [{"type": "assign_to_round_robin", "value": None}],
        },
    ]
]


async def create_default_rules(
    service: AutomationRuleService, org_id: str, created_by: str | None = None
) -> list[AutomationRule]:
    """Create each default rule; one failing does not stop the rest."""
    created = []
    for rule in DEFAULT_RULES:
        try:
            created.append(await service.create_rule(org_id, rule, created_by))
        except Exception:
            logger.exception(
                "Failed to create default rule", rule_name=rule.name, org_id=org_id
            )
    return created
