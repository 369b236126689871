"""cancel command: cancel a job before its next attempt."""

from __future__ import annotations

import click
from rich.console import Console

from prsentry_core.errors import JobNotFoundError

console = Console()


@click.command("cancel")
@click.argument("job_id")
@click.option("--reason", default="cancelled by request", show_default=True, help="Reason recorded on the job.")
@click.pass_context
def cancel_cmd(ctx, job_id: str, reason: str):
    """Cancel a review job.

    Queued jobs fail immediately and their quota unit is returned. A job
    whose attempt is in flight finishes that attempt and is not retried.
    """
    from prsentry_cli.cli import _build_scheduler

    scheduler = _build_scheduler(ctx.obj["config"], ctx.obj["store"], ctx.obj["gate"])
    try:
        job = scheduler.cancel(job_id, reason)
    except JobNotFoundError:
        raise click.ClickException(f"Job {job_id} not found.")

    if job.status == "failed" and job.error_kind == "Cancelled":
        console.print(f"[green]Job {job_id} cancelled.[/green]")
    elif job.is_terminal:
        console.print(f"[yellow]Job {job_id} is already {job.status}; nothing to cancel.[/yellow]")
    else:
        console.print(f"[yellow]Job {job_id} is running; it will not be retried.[/yellow]")
