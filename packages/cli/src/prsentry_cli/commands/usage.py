"""usage command: show an account's review quota."""

from __future__ import annotations

import click
from rich.console import Console

from prsentry_core.errors import ValidationError
from prsentry_core.gate import UNLIMITED

console = Console()


@click.command("usage")
@click.option("--account", "account_id", required=True, help="Account id.")
@click.option("--plan", "plan_tier", default="trial", show_default=True, help="Plan tier of the account.")
@click.pass_context
def usage_cmd(ctx, account_id: str, plan_tier: str):
    """Show how many review units an account has used this period."""
    try:
        decision = ctx.obj["gate"].usage(account_id, plan_tier)
    except ValidationError as e:
        raise click.UsageError(str(e))

    if decision.limit == UNLIMITED:
        console.print(f"{account_id} ({plan_tier}): {decision.used} review(s) in {decision.period}, unlimited plan")
        return
    style = "green" if decision.remaining else "red"
    console.print(
        f"{account_id} ({plan_tier}): {decision.used}/{decision.limit} review(s) used in {decision.period}, "
        f"[{style}]{decision.remaining} remaining[/{style}]"
    )
