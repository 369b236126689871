"""GitHub-backed ResultSink: posts the review as a PR review with inline comments."""

from __future__ import annotations

import logging

from prsentry_core.errors import DeliveryRejectedError
from prsentry_core.gh.pull_request import (
    GITHUB_ERRORS,
    get_client,
    get_pull,
    get_repo,
    has_review_for_job,
    job_marker,
    translate_delivery_error,
)
from prsentry_core.interfaces import ResultSink
from prsentry_core.models import AIReviewResult

logger = logging.getLogger(__name__)


class GitHubReviewSink(ResultSink):
    def __init__(self, default_token: str | None = None, timeout: float = 30.0, batch_limit: int = 60):
        self._default_token = default_token
        self._timeout = timeout
        self._batch_limit = max(1, batch_limit)

    def deliver(
        self,
        repo: str,
        pr_number: int,
        result: AIReviewResult,
        job_id: str,
        token: str | None = None,
    ) -> None:
        client = get_client(token or self._default_token, self._timeout)
        try:
            this_pr = get_pull(get_repo(client, repo), pr_number)
            if this_pr.state != "open":
                raise DeliveryRejectedError(f"{repo}#{pr_number} is {'merged' if this_pr.merged else 'closed'}")
            if has_review_for_job(this_pr, job_id):
                logger.info("Review for job %s already on %s#%d, not posting again", job_id, repo, pr_number)
                return
        except GITHUB_ERRORS as e:
            raise translate_delivery_error(e, f"preparing delivery to {repo}#{pr_number}") from e

        marker = "\n" + job_marker(job_id)
        api_comments = [{"path": c.path, "line": c.line, "side": "RIGHT", "body": c.body} for c in result.comments]
        batches = [
            api_comments[i : i + self._batch_limit] for i in range(0, len(api_comments), self._batch_limit)
        ] or [[]]

        posted = 0
        for idx, batch in enumerate(batches):
            is_last = idx == len(batches) - 1
            body = (result.summary or "AI code review completed.") if is_last else (
                f"Review in progress ({posted + len(batch)}/{len(api_comments)} comments)..."
            )
            try:
                this_pr.create_review(body=body + marker, event="COMMENT", comments=batch)
            except GITHUB_ERRORS as e:
                error = translate_delivery_error(e, f"posting review to {repo}#{pr_number}")
                error.partial = idx > 0
                raise error from e
            posted += len(batch)

        logger.info("Posted review to %s#%d: %d comment(s)", repo, pr_number, posted)
