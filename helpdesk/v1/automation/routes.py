"""
Automation rule management endpoints, scoped to one organization.
"""

from typing import Any

from fastapi import APIRouter, Depends

from helpdesk.config.logging import get_logger
from helpdesk.infra.container import ServiceContainer, get_container
from helpdesk.v1.automation.default_rules import create_default_rules
from helpdesk.v1.automation.schemas import AutomationRuleCreate, AutomationRuleUpdate
from helpdesk.v1.core.exceptions import create_success_response
from helpdesk.v1.core.security import AdminDep, Principal

logger = get_logger(__name__)
router = APIRouter(prefix="/orgs/{org_id}/automation/rules", tags=["automation"])


@router.get("", response_model=dict)
async def list_rules(
    org_id: str,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """List an organization's rules, highest priority first."""

    rules = await container.rules.list_rules(org_id)
    return create_success_response(data=[r.model_dump(mode="json") for r in rules])


@router.post("", response_model=dict, status_code=201)
async def create_rule(
    org_id: str,
    rule: AutomationRuleCreate,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    created = await container.rules.create_rule(org_id, rule, principal.user_id)
    return create_success_response(data=created.model_dump(mode="json"))


@router.post("/defaults", response_model=dict, status_code=201)
async def create_defaults(
    org_id: str,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Install the built-in rule set for an organization."""

    created = await create_default_rules(container.rules, org_id, principal.user_id)
    return create_success_response(
        data=[r.model_dump(mode="json") for r in created],
        message=f"Created {len(created)} default rules",
    )


@router.patch("/{rule_id}", response_model=dict)
async def update_rule(
    org_id: str,
    rule_id: str,
    changes: AutomationRuleUpdate,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    updated = await container.rules.update_rule(org_id, rule_id, changes)
    return create_success_response(data=updated.model_dump(mode="json"))


@router.delete("/{rule_id}", response_model=dict)
async def delete_rule(
    org_id: str,
    rule_id: str,
    principal: Principal = AdminDep,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    await container.rules.delete_rule(org_id, rule_id)
    return create_success_response(data={"rule_id": rule_id}, message="Rule deleted")
