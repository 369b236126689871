"""status and jobs commands: read-only views of the job store."""

from __future__ import annotations

from datetime import datetime, timezone

import click
from rich.console import Console
from rich.table import Table

console = Console()

_STATUS_STYLE = {
    "queued": "cyan",
    "fetching": "blue",
    "reviewing": "blue",
    "delivering": "blue",
    "completed": "green",
    "failed": "red",
}


def _fmt_time(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def print_job(job) -> None:
    """Print one job as a two-column table."""
    style = _STATUS_STYLE.get(job.status, "white")
    table = Table(title=f"Job {job.job_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Target", f"{job.repo}#{job.pr_number}")
    table.add_row("Account", f"{job.account_id} ({job.plan_tier})")
    table.add_row("Provider", job.provider + (f" / {job.model}" if job.model else ""))
    table.add_row("Status", f"[{style}]{job.status}[/{style}]")
    table.add_row("Attempts", str(job.attempts))
    table.add_row("Created", _fmt_time(job.created_at))
    table.add_row("Updated", _fmt_time(job.updated_at))
    if job.last_error:
        table.add_row("Error", f"[red]{job.error_kind}[/red]: {job.last_error}")
    if job.summary:
        table.add_row("Summary", job.summary)
    if job.status == "completed":
        table.add_row("Comments", str(len(job.comments)))
    console.print(table)


@click.command("status")
@click.argument("job_id")
@click.pass_context
def status_cmd(ctx, job_id: str):
    """Show the current state of a review job."""
    job = ctx.obj["store"].get(job_id)
    if job is None:
        raise click.ClickException(f"Job {job_id} not found.")
    print_job(job)


@click.command("jobs")
@click.option("--account", "account_id", default=None, help="Only jobs for this account.")
@click.option(
    "--status",
    default=None,
    type=click.Choice(list(_STATUS_STYLE)),
    help="Only jobs in this status.",
)
@click.option("--limit", default=20, show_default=True, help="Maximum number of jobs to show.")
@click.pass_context
def jobs_cmd(ctx, account_id: str | None, status: str | None, limit: int):
    """List review jobs, newest first."""
    jobs = ctx.obj["store"].list_jobs(account_id=account_id, status=status, limit=limit)
    if not jobs:
        console.print("[yellow]No jobs found.[/yellow]")
        return

    table = Table(title="Review jobs", show_header=True, header_style="bold cyan")
    table.add_column("Job", width=12)
    table.add_column("Target", max_width=40)
    table.add_column("Account")
    table.add_column("Status", width=12)
    table.add_column("Attempts", justify="right")
    table.add_column("Comments", justify="right")
    table.add_column("Created", width=20)

    for job in jobs:
        style = _STATUS_STYLE.get(job.status, "white")
        table.add_row(
            job.job_id[:12],
            f"{job.repo}#{job.pr_number}",
            job.account_id,
            f"[{style}]{job.status}[/{style}]",
            str(job.attempts),
            str(len(job.comments)) if job.status == "completed" else "-",
            _fmt_time(job.created_at),
        )

    console.print(table)
