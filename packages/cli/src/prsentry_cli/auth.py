"""Credential resolution for the CLI.

GitHub token resolution order (stops at first success):
  1. GITHUB_TOKEN environment variable (CI / explicit override)
  2. `gh auth token` (GitHub CLI session, works after `gh auth login`)

Provider API keys come from the environment only (see prsentry_core.config).
"""

from __future__ import annotations

import logging
import os
import subprocess

import click

from prsentry_core.config import api_key_env

logger = logging.getLogger(__name__)


def resolve_github_token() -> str | None:
    """Return a GitHub token or None if no valid source is available.

    Never raises; callers decide whether a missing token is fatal.
    """
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            gh_token = result.stdout.strip()
            if gh_token:
                logger.debug("Resolved GitHub token via gh CLI session.")
                return gh_token
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or timed out.
        pass

    return None


def require_provider_key(config: dict, provider: str) -> None:
    """Raise a UsageError when the provider jobs will run on has no API key."""
    if not (config.get("api_keys") or {}).get(provider):
        raise click.UsageError(f"{api_key_env(provider)} environment variable is not set.")
