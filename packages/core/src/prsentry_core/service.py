"""Wire a JobScheduler from configuration.

Collaborators are constructed here and passed in explicitly, so nothing in
the pipeline reaches for module-level singletons. Tests build the scheduler
directly with fakes instead of calling this.
"""

from __future__ import annotations

import functools

from prsentry_core.config import load_rules
from prsentry_core.gate import RateGate
from prsentry_core.gh.fetcher import GitHubContextFetcher
from prsentry_core.gh.sink import GitHubReviewSink
from prsentry_core.jobs import BaseJobStore
from prsentry_core.pipeline import ReviewPipeline
from prsentry_core.providers.registry import build_providers
from prsentry_core.scheduler import JobScheduler


def build_scheduler(config: dict, store: BaseJobStore, gate: RateGate) -> JobScheduler:
    timeouts = config.get("timeouts") or {}
    token = config.get("github_token")

    pipeline = ReviewPipeline(
        store=store,
        fetcher=GitHubContextFetcher(
            default_token=token,
            timeout=timeouts.get("fetch", 30.0),
            exclude=config.get("exclude") or [],
        ),
        gate=gate,
        sink=GitHubReviewSink(
            default_token=token,
            timeout=timeouts.get("deliver", 30.0),
            batch_limit=config.get("batch_limit", 60),
        ),
        providers=build_providers(config),
        rules_for=functools.partial(_rules_for, config),
        max_diff_chars=config.get("max_diff_chars", 100000),
        max_chars_per_file=config.get("max_chars_per_file", 20000),
    )
    return JobScheduler(
        store=store,
        pipeline=pipeline,
        concurrency=config.get("concurrency", 5),
        max_attempts=config.get("max_attempts", 3),
        backoff_base=config.get("backoff_base", 2.0),
        backoff_max=config.get("backoff_max", 300.0),
        poll_interval=config.get("poll_interval", 1.0),
        default_provider=config.get("provider", "deepseek"),
    )


def _rules_for(config: dict, account_id: str, repo: str) -> str:
    return load_rules(config, repo)
