"""CLI entry point for prsentry.

Commands:
  submit: enqueue a pull-request review (optionally wait for it)
  worker: run the worker pool that processes queued reviews
  status: show one job
  jobs: list jobs, newest first
  cancel: cancel a job before its next attempt
  usage: show an account's review quota for the current period
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prsentry_cli.commands.cancel import cancel_cmd
from prsentry_cli.commands.jobs import jobs_cmd, status_cmd
from prsentry_cli.commands.submit import submit_cmd
from prsentry_cli.commands.usage import usage_cmd
from prsentry_cli.commands.worker import worker_cmd

console = Console()


def _build_backends(config: dict):
    """Instantiate the job store and rate gate from .prsentry.yml settings.

    Backend selection:
      store: sqlite → SQLiteJobStore + SQLiteRateGate sharing store_path
      (default)     → MemoryJobStore + MemoryRateGate (single process only)

    This factory lives in cli.py so prsentry_core never imports the store
    package and the store package knows nothing about the config format.
    """
    plans = config.get("plans") or {}

    if config.get("store", "memory") == "sqlite":
        from prsentry_store.quota import SQLiteRateGate
        from prsentry_store.sqlite import SQLiteJobStore

        db_path = config.get("store_path", ".prsentry.db")
        return SQLiteJobStore(db_path=db_path), SQLiteRateGate(db_path=db_path, plan_limits=plans)

    from prsentry_core.gate import MemoryRateGate
    from prsentry_core.jobs import MemoryJobStore

    return MemoryJobStore(), MemoryRateGate(plan_limits=plans)


def _build_scheduler(config: dict, store, gate):
    from prsentry_core.service import build_scheduler

    return build_scheduler(config, store, gate)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prsentry"),
    prog_name="prsentry",
)
@click.option(
    "--config",
    "config_path",
    default=".prsentry.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRSENTRY_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Queue-backed AI pull-request reviews."""
    from prsentry_core.config import load_config
    from prsentry_cli.auth import resolve_github_token

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    ctx.ensure_object(dict)
    config = load_config(config_path)

    token = resolve_github_token()
    if token:
        config["github_token"] = token

    store, gate = _build_backends(config)
    ctx.obj["config"] = config
    ctx.obj["store"] = store
    ctx.obj["gate"] = gate
    ctx.call_on_close(store.close)
    ctx.call_on_close(gate.close)


main.add_command(submit_cmd)
main.add_command(worker_cmd)
main.add_command(status_cmd)
main.add_command(jobs_cmd)
main.add_command(cancel_cmd)
main.add_command(usage_cmd)
