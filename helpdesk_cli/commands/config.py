"""Configuration Commands - CLI settings management"""

from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    if key == "api.base_url" and not value.startswith(("http://", "https://")):
        print_error("API base URL must start with http:// or https://")
        raise typer.Exit(1)

    if key.endswith((".timeout", "_per_page")) and not value.isdigit():
        print_error(f"{key} must be a whole number")
        raise typer.Exit(1)

    stored: Any = int(value) if value.isdigit() else value
    try:
        config.set(key, stored)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {value}")
    if key == "api.base_url":
        print_info("Test connection with: helpdesk status")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Configuration key")):
    """📋 Get one configuration value"""
    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' not found[/yellow]")
        raise typer.Exit(1)
    console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Show all configuration settings"""
    console.print(
        Panel(
            "[bold cyan]Helpdesk CLI Configuration[/bold cyan]\n\n"
            f"[dim]Stored in {config.config_file}[/dim]",
            title="Configuration",
            border_style="blue",
        )
    )
    _display_config_section(config.load_config(), "")


@app.command("reset")
def reset_config(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """🔄 Reset configuration to defaults"""
    if not yes and not Confirm.ask("Reset ALL configuration to defaults?"):
        console.print("Configuration reset cancelled.")
        return

    config.reset()
    print_success("Configuration reset to defaults")


@app.command("dev-mode")
def setup_dev_mode(
    user_id: str = typer.Argument(..., help="User ID for dev authentication"),
    org_id: str = typer.Argument(..., help="Organization ID for dev authentication"),
):
    """🔧 Configure dev mode authentication headers"""
    config.set("api.headers.X-User-ID", user_id)
    config.set("api.headers.X-Org-ID", org_id)
    config.set("api.headers.X-Roles", "admin")
    config.set("org.id", org_id)

    print_success("Dev mode configured:")
    console.print(f"  User ID: [cyan]{user_id}[/cyan]")
    console.print(f"  Org ID: [cyan]{org_id}[/cyan]")
    console.print("💡 [dim]Make sure the server is running with AUTH_MODE=dev.[/dim]")


def _display_config_section(data: dict[str, Any], prefix: str, indent: int = 0):
    indent_str = "  " * indent

    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else key

        if isinstance(value, dict):
            console.print(f"{indent_str}[bold blue]{key}:[/bold blue]")
            _display_config_section(value, full_key, indent + 1)
            continue

        if isinstance(value, bool):
            color = "green" if value else "red"
            display_value = f"[{color}]{value}[/{color}]"
        elif isinstance(value, int | float):
            display_value = f"[cyan]{value}[/cyan]"
        elif isinstance(value, str) and value.startswith("http"):
            display_value = f"[blue]{value}[/blue]"
        else:
            display_value = f"[yellow]{value}[/yellow]"

        console.print(f"{indent_str}[cyan]{key}[/cyan]: {display_value}")
