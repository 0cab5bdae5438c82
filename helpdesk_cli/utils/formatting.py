"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "PENDING": "yellow",
    "PROCESSING": "blue",
    "COMPLETED": "green",
    "FAILED": "red",
}


def print_success(message: str):
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    console.print(f"[blue]ℹ {message}[/blue]")


def create_stats_table(stats: dict[str, dict[str, Any]], title: str = "Job Queues") -> Table:
    """Per-type queue depths; a 'Processed' column appears after a drain pass"""
    show_processed = any("processed" in s for s in stats.values())

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Pending", justify="right", style="yellow")
    table.add_column("Processing", justify="right", style="blue")
    table.add_column("Failed", justify="right", style="red")
    if show_processed:
        table.add_column("Processed", justify="right", style="green")

    for job_type, s in sorted(stats.items()):
        row = [
            job_type,
            str(s.get("pending", 0)),
            str(s.get("processing", 0)),
            str(s.get("failed", 0)),
        ]
        if show_processed:
            row.append(str(s.get("processed", 0)))
        table.add_row(*row)

    return table


def create_failed_jobs_table(records: list[dict[str, Any]], total: int) -> Table:
    table = Table(title=f"Failed Jobs ({total} total)", box=box.ROUNDED)

    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Attempts", justify="center")
    table.add_column("Failed At", style="yellow")
    table.add_column("Retried", justify="center")
    table.add_column("Error", style="red")

    for record in records:
        table.add_row(
            record.get("id", ""),
            record.get("type", ""),
            f"{record.get('attempts', 0)}/{record.get('max_attempts', 0)}",
            record.get("failed_at", "—"),
            "✓" if record.get("retried_at") else "—",
            _truncate(record.get("error") or "—", 60),
        )

    return table


def create_rules_table(rules: list[dict[str, Any]]) -> Table:
    table = Table(title="Automation Rules", box=box.ROUNDED)

    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Trigger", style="magenta")
    table.add_column("Priority", justify="right", style="yellow")
    table.add_column("Enabled", justify="center")
    table.add_column("Conditions", justify="right")
    table.add_column("Actions", justify="right")

    for rule in rules:
        enabled = rule.get("enabled", False)
        table.add_row(
            rule.get("id", ""),
            rule.get("name", ""),
            rule.get("trigger_on", ""),
            str(rule.get("priority", 0)),
            "[green]yes[/green]" if enabled else "[red]no[/red]",
            str(len(rule.get("conditions", []))),
            str(len(rule.get("actions", []))),
        )

    return table


def display_job(job: dict[str, Any]):
    """Show one job record with its payload and result"""
    status = job.get("status", "")
    style = STATUS_STYLES.get(status, "white")

    lines = [
        f"• ID: [cyan]{job.get('id', '')}[/cyan]",
        f"• Type: [magenta]{job.get('type', '')}[/magenta]",
        f"• Status: [{style}]{status}[/{style}]",
        f"• Attempts: {job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
        f"• Created: {job.get('created_at', '—')}",
    ]
    for label, key in (
        ("Started", "started_at"),
        ("Completed", "completed_at"),
        ("Retry at", "retry_at"),
    ):
        if job.get(key):
            lines.append(f"• {label}: {job[key]}")
    if job.get("error"):
        lines.append(f"• Error: [red]{job['error']}[/red]")

    console.print(Panel("\n".join(lines), title="Job", border_style=style))
    console.print(Panel(json.dumps(job.get("data", {}), indent=2), title="Data"))
    if job.get("result") is not None:
        console.print(
            Panel(json.dumps(job["result"], indent=2), title="Result", border_style="green")
        )


def _truncate(text: str, width: int) -> str:
    return text[:width] + "..." if len(text) > width else text
