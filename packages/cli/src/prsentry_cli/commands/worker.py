"""worker command: run the worker pool."""

from __future__ import annotations

import time

import click
from rich.console import Console

console = Console()


@click.command("worker")
@click.option("--concurrency", type=int, default=None, help="Number of parallel workers. Overrides config file.")
@click.option("--drain", is_flag=True, help="Exit once no active jobs are left instead of running forever.")
@click.pass_context
def worker_cmd(ctx, concurrency: int | None, drain: bool):
    """Process queued review jobs until interrupted."""
    from prsentry_cli.cli import _build_scheduler

    config = ctx.obj["config"]
    if concurrency is not None:
        if concurrency < 1:
            raise click.UsageError("--concurrency must be at least 1.")
        config["concurrency"] = concurrency
    if not any((config.get("api_keys") or {}).values()):
        raise click.UsageError("No AI provider API key is set (DEEPSEEK_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY).")
    if not config.get("github_token"):
        console.print("[yellow]No GitHub token found; only jobs submitted with their own token can run.[/yellow]")

    scheduler = _build_scheduler(config, ctx.obj["store"], ctx.obj["gate"])

    if drain:
        scheduler.run_until_idle()
        console.print("[green]Queue drained.[/green]")
        return

    scheduler.start()
    console.print(f"[bold]Worker pool running[/bold] ({scheduler.concurrency} worker(s)). Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping; waiting for attempts in flight...")
    finally:
        scheduler.stop()
