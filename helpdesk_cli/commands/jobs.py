"""Job Commands - enqueue, inspect, drain and dead-letter administration"""

import json

import typer
from rich.console import Console
from rich.prompt import Confirm

from ..client.endpoints import HelpdeskAPIError, HelpdeskClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_failed_jobs_table,
    create_stats_table,
    display_job,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job queue commands")
failed_app = typer.Typer(name="failed", help="Dead-lettered job commands")
app.add_typer(failed_app, name="failed")


@app.command("enqueue")
def enqueue(
    job_type: str = typer.Argument(..., help="Job type, e.g. SEND_EMAIL"),
    data: str = typer.Option("{}", "--data", "-d", help="Job payload as JSON"),
    max_attempts: int | None = typer.Option(
        None, "--max-attempts", "-m", help="Override the attempt ceiling"
    ),
):
    """📥 Enqueue a background job"""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        print_error(f"--data is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(payload, dict):
        print_error("--data must be a JSON object")
        raise typer.Exit(1)

    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            response = client.enqueue_job(job_type.upper(), payload, max_attempts)
    except HelpdeskAPIError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Enqueued {response.get('type')} job {response.get('job_id')}")


@app.command("show")
def show(job_id: str = typer.Argument(..., help="Job ID")):
    """🔎 Show a job and its result"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            job = client.get_job(job_id)
    except HelpdeskAPIError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    display_job(job)


@app.command("stats")
def stats():
    """📊 Show pending / processing / failed depth per job type"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            data = client.get_job_stats()
    except HelpdeskAPIError as e:
        print_error(f"Failed to get job stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_table(data))


@app.command("process")
def process(
    max_jobs: int | None = typer.Option(
        None, "--max-jobs", "-n", help="Drain limit per job type"
    ),
):
    """⚙️ Run one drain pass over every queue"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            print_info("Draining job queues...")
            data = client.process_jobs(max_jobs)
    except HelpdeskAPIError as e:
        print_error(f"Failed to process jobs: {e}")
        raise typer.Exit(1) from None

    total = sum(data.get("processed", {}).values())
    console.print(create_stats_table(data.get("stats", {}), title="Drain Pass"))
    print_success(f"Processed {total} job(s)")


@failed_app.command("list")
def list_failed(
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    date_from: str | None = typer.Option(None, "--from", help="ISO timestamp lower bound"),
    date_to: str | None = typer.Option(None, "--to", help="ISO timestamp upper bound"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Page size"),
    offset: int = typer.Option(0, "--offset", "-o", help="Page offset"),
):
    """🪦 List dead-lettered jobs, newest first"""
    limit = limit or config.get("display.failed_jobs_per_page")
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            data = client.list_failed_jobs(
                type=job_type.upper() if job_type else None,
                date_from=date_from,
                date_to=date_to,
                limit=limit,
                offset=offset,
            )
    except HelpdeskAPIError as e:
        print_error(f"Failed to list failed jobs: {e}")
        raise typer.Exit(1) from None

    records = data.get("jobs", [])
    if not records:
        print_info("No failed jobs")
        return

    console.print(create_failed_jobs_table(records, data.get("total", len(records))))


@failed_app.command("retry")
def retry_failed(failed_job_id: str = typer.Argument(..., help="Dead-letter record ID")):
    """🔁 Re-enqueue a dead-lettered job as a new job"""
    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            data = client.retry_failed_job(failed_job_id)
    except HelpdeskAPIError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Re-enqueued as job {data.get('job_id')}")


@failed_app.command("delete")
def delete_failed(
    failed_job_id: str = typer.Argument(..., help="Dead-letter record ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🗑️ Delete a dead-letter record"""
    if not yes and not Confirm.ask(f"Delete failed job {failed_job_id}?"):
        print_warning("Cancelled")
        return

    try:
        with HelpdeskClient(config.get("api.base_url")) as client:
            client.delete_failed_job(failed_job_id)
    except HelpdeskAPIError as e:
        print_error(f"Failed to delete job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Deleted failed job {failed_job_id}")
