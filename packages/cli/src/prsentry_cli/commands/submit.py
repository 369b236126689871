"""submit command: enqueue a pull-request review."""

from __future__ import annotations

import click
from rich.console import Console

from prsentry_cli.commands.jobs import print_job

console = Console()


@click.command("submit")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--account", "account_id", required=True, help="Account the review is billed to.")
@click.option("--plan", "plan_tier", default="trial", show_default=True, help="Plan tier of the account.")
@click.option("--provider", default=None, help="AI provider. Overrides config file.")
@click.option("--model", default=None, help="Model name override for the provider.")
@click.option("--token", default=None, help="GitHub token for this job. Defaults to the worker's token.")
@click.option("--wait", is_flag=True, help="Process the job in this process and wait for the outcome.")
@click.pass_context
def submit_cmd(
    ctx,
    repo: str,
    pr_number: int,
    account_id: str,
    plan_tier: str,
    provider: str | None,
    model: str | None,
    token: str | None,
    wait: bool,
):
    """Queue an AI review of a pull request.

    Without --wait the job is left for `prsentry worker`, which needs a
    shared store (store: sqlite in .prsentry.yml).

    \b
    Environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      DEEPSEEK_API_KEY     Required for --provider deepseek
      OPENAI_API_KEY       Required for --provider openai
      ANTHROPIC_API_KEY    Required for --provider anthropic
    """
    from prsentry_cli.auth import require_provider_key
    from prsentry_cli.cli import _build_scheduler
    from prsentry_core.providers.registry import available_providers

    config = ctx.obj["config"]
    provider = provider or config["provider"]
    if provider not in available_providers():
        raise click.UsageError(f"Unknown provider {provider!r}. Choose one of: {', '.join(available_providers())}.")
    if wait:
        require_provider_key(config, provider)
    elif config.get("store", "memory") == "memory":
        console.print(
            "[yellow]The memory store does not outlive this command; use --wait or set store: sqlite.[/yellow]"
        )

    scheduler = _build_scheduler(config, ctx.obj["store"], ctx.obj["gate"])
    job_id = scheduler.submit_review(
        account_id=account_id,
        plan_tier=plan_tier,
        repo=repo,
        pr_number=pr_number,
        token=token,
        provider=provider,
        model=model,
    )
    console.print(f"Queued job [bold]{job_id}[/bold] for {repo}#{pr_number}")

    if wait:
        scheduler.run_until_idle()
        job = scheduler.get_status(job_id)
        print_job(job)
        if job.status != "completed":
            ctx.exit(1)
