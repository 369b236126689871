from __future__ import annotations

import re

import requests
from github import Auth, Github, GithubException, RateLimitExceededException

from prsentry_core.errors import DeliveryRejectedError, FetchRejectedError, PipelineError, TransientIOError

_JOB_MARKER_RE = re.compile(r"<!-- prsentry-job: ([0-9a-zA-Z_-]+) -->")

_REJECTED_STATUSES = {401, 403, 404, 410, 422}

# Everything PyGithub raises for a failed call: API errors plus transport
# errors from the underlying requests session.
GITHUB_ERRORS = (GithubException, requests.exceptions.RequestException)


def get_client(token: str | None, timeout: float) -> Github:
    # retry=None: failed calls go back to the job scheduler, which owns backoff.
    auth = Auth.Token(token) if token else None
    return Github(auth=auth, timeout=int(timeout), retry=None)


def get_repo(client: Github, repo_name: str):
    return client.get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def job_marker(job_id: str) -> str:
    return f"<!-- prsentry-job: {job_id} -->"


def has_review_for_job(pr, job_id: str) -> bool:
    """Return True if a review carrying this job's marker is already on the PR."""
    for review in pr.get_reviews():
        match = _JOB_MARKER_RE.search(review.body or "")
        if match and match.group(1) == job_id:
            return True
    return False


def translate_error(exc: Exception, action: str, rejected: type[PipelineError] = FetchRejectedError) -> PipelineError:
    """Map a PyGithub or transport exception onto the pipeline taxonomy.

    Rate limits, 5xx responses and transport failures are transient.
    Missing PRs and insufficient permissions are permanent and raised as
    ``rejected`` (FetchRejectedError or DeliveryRejectedError).
    """
    if isinstance(exc, RateLimitExceededException):
        return TransientIOError(f"GitHub rate limit hit while {action}")
    if isinstance(exc, GithubException):
        status = exc.status or 0
        message = exc.data.get("message") if isinstance(exc.data, dict) else exc.data
        if status in _REJECTED_STATUSES:
            if status == 404:
                return rejected(f"Pull request not found or not visible while {action} (404)")
            return rejected(f"GitHub refused {action} ({status}): {message}")
        if status == 429 or status >= 500:
            return TransientIOError(f"GitHub error {status} while {action}: {message}")
        return rejected(f"GitHub error {status} while {action}: {message}")
    return TransientIOError(f"Network error while {action}: {exc}")


def translate_delivery_error(exc: Exception, action: str) -> PipelineError:
    return translate_error(exc, action, rejected=DeliveryRejectedError)
