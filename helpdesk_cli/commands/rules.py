"""Rule Commands - automation rule administration for one organization"""

import typer
from rich.console import Console

from ..client.endpoints import HelpdeskAPIError, HelpdeskClient
from ..utils.config_manager import config
from ..utils.formatting import create_rules_table, print_error, print_info, print_success

console = Console()
app = typer.Typer(name="rules", help="Automation rule commands")

OrgOption = typer.Option(None, "--org", help="Organization ID (defaults to org.id)")


def _org(org_id: str | None) -> str:
    return org_id or config.get("org.id")


@app.command("list")
def list_rules(org_id: str | None = OrgOption):
    """📜 List rules, highest priority first"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            rules = client.list_rules(_org(org_id))
    except HelpdeskAPIError as e:
        print_error(f"Failed to list rules: {e}")
        raise typer.Exit(1) from None

    if not rules:
        print_info("No automation rules. Install the defaults with: helpdesk rules defaults")
        return

    console.print(create_rules_table(rules))


@app.command("defaults")
def install_defaults(org_id: str | None = OrgOption):
    """🧰 Install the built-in rule set"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            created = client.create_default_rules(_org(org_id))
    except HelpdeskAPIError as e:
        print_error(f"Failed to create default rules: {e}")
        raise typer.Exit(1) from None

    print_success(f"Created {len(created)} default rules")
    if created:
        console.print(create_rules_table(created))


@app.command("enable")
def enable(rule_id: str = typer.Argument(...), org_id: str | None = OrgOption):
    """✅ Enable a rule"""
    _set_enabled(rule_id, _org(org_id), True)


@app.command("disable")
def disable(rule_id: str = typer.Argument(...), org_id: str | None = OrgOption):
    """⛔ Disable a rule"""
    _set_enabled(rule_id, _org(org_id), False)


@app.command("delete")
def delete(rule_id: str = typer.Argument(...), org_id: str | None = OrgOption):
    """🗑️ Delete a rule"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            client.delete_rule(_org(org_id), rule_id)
    except HelpdeskAPIError as e:
        print_error(f"Failed to delete rule: {e}")
        raise typer.Exit(1) from None

    print_success(f"Deleted rule {rule_id}")


def _set_enabled(rule_id: str, org_id: str, enabled: bool):
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            rule = client.set_rule_enabled(org_id, rule_id, enabled)
    except HelpdeskAPIError as e:
        print_error(f"Failed to update rule: {e}")
        raise typer.Exit(1) from None

    state = "enabled" if rule.get("enabled") else "disabled"
    print_success(f"Rule '{rule.get('name', rule_id)}' {state}")
