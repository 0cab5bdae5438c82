"""Helpdesk operator CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import HelpdeskAPIError, HelpdeskClient
from .commands import config, jobs, rules
from .utils.config_manager import config as config_manager
from .utils.formatting import create_stats_table, print_info

console = Console()

app = typer.Typer(
    name="helpdesk",
    help="🎫 Helpdesk - background jobs and ticket automation admin CLI",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

app.add_typer(jobs.app, name="jobs")
app.add_typer(rules.app, name="rules")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API connectivity, database and queue health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with HelpdeskClient(base_url) as client:
            health = client.health_check()
    except HelpdeskAPIError as e:
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"{e}\n\n"
                f"Make sure the Helpdesk API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]helpdesk config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    database = health.get("database", {})
    job_health = health.get("jobs", {})
    db_line = (
        f"[green]connected[/green] ({database.get('response_time_ms')} ms)"
        if database.get("connected")
        else f"[red]down[/red] {database.get('error', '')}"
    )
    border = "green" if health.get("ok") else "yellow"

    console.print(
        Panel(
            f"🚀 [green]Connected[/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Database: {db_line}\n"
            f"• Job backend: [magenta]{job_health.get('backend', 'unknown')}[/magenta]\n"
            f"• Handlers: {len(job_health.get('handlers', []))}\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style=border,
        )
    )
    if job_health.get("queues"):
        console.print(create_stats_table(job_health["queues"]))


if __name__ == "__main__":
    app()
