"""Per-attempt review execution: the job state machine.

    queued → fetching → reviewing → delivering → completed
       ↑________|___________|____________|        (transient error: retry)
    any non-terminal status → failed               (permanent error, exhaustion)

One call to ReviewPipeline.run_attempt() is one attempt. Collaborator errors
are caught at the step boundary and returned as an AttemptOutcome; the
scheduler decides whether a retryable outcome gets another attempt.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from prsentry_core.config import DEFAULT_RULES
from prsentry_core.errors import (
    DeliveryRejectedError,
    PermanentProviderError,
    PipelineError,
    QuotaExceededError,
    ValidationError,
)
from prsentry_core.gate import RateGate
from prsentry_core.interfaces import ContextFetcher, FetchedContext, ResultSink
from prsentry_core.jobs import BaseJobStore
from prsentry_core.models import (
    COMPLETED,
    DELIVERING,
    DELIVERY_DELIVERED,
    DELIVERY_PENDING,
    DELIVERY_STARTED,
    FAILED,
    FETCHING,
    REVIEWING,
    AIReviewResult,
    ReviewContext,
    ReviewJob,
)
from prsentry_core.providers.base import BaseProvider
from prsentry_core.utils.diff import commentable_lines, count_changed_lines, truncate

logger = logging.getLogger(__name__)

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

NOTHING_TO_REVIEW = "No changes to review."
PARTIAL_REVIEW_NOTE = (
    "**Partial review:** this pull request exceeds the size limit, so only part of the diff "
    "and file contents was reviewed."
)

OUTCOME_COMPLETED = "completed"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class AttemptOutcome:
    status: str  # "completed" | "retry" | "failed"
    error: str | None = None
    error_kind: str | None = None

    @property
    def retryable(self) -> bool:
        return self.status == OUTCOME_RETRY


def validate_target(repo: str, pr_number) -> None:
    """Raise ValidationError unless repo is ``owner/name`` and pr_number is positive."""
    if not isinstance(repo, str) or not _REPO_RE.match(repo) or repo.split("/")[0] in (".", ".."):
        raise ValidationError(f"Invalid repository {repo!r}: expected 'owner/repo'.")
    if isinstance(pr_number, bool) or not isinstance(pr_number, int) or pr_number <= 0:
        raise ValidationError(f"Invalid pull request number {pr_number!r}: expected a positive integer.")


def _default_rules(account_id: str, repo: str) -> str:
    return DEFAULT_RULES


class ReviewPipeline:
    """Runs single attempts of review jobs against injected collaborators."""

    def __init__(
        self,
        store: BaseJobStore,
        fetcher: ContextFetcher,
        gate: RateGate,
        sink: ResultSink,
        providers: Mapping[str, BaseProvider],
        rules_for: Callable[[str, str], str] | None = None,
        max_diff_chars: int = 100000,
        max_chars_per_file: int = 20000,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.fetcher = fetcher
        self.gate = gate
        self.sink = sink
        self.providers = providers
        self.rules_for = rules_for or _default_rules
        self.max_diff_chars = max_diff_chars
        self.max_chars_per_file = max_chars_per_file
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Attempt                                                              #
    # ------------------------------------------------------------------ #

    def run_attempt(self, job: ReviewJob) -> AttemptOutcome:
        """Run one attempt of a job the caller has claimed.

        Terminal outcomes (completed, failed) are finalized and saved here.
        A retry outcome leaves the job locked at the step that failed; the
        scheduler requeues or dead-letters it.
        """
        logger.info("Job %s attempt %d: %s#%s", job.job_id, job.attempts, job.repo, job.pr_number)
        try:
            validate_target(job.repo, job.pr_number)
            self._reserve_quota(job)

            self._advance(job, FETCHING)
            fetched = self.fetcher.fetch_context(job.repo, job.pr_number, job.token)
            if count_changed_lines(fetched.diff) == 0:
                logger.info("Job %s: empty diff, nothing to review", job.job_id)
                job.summary = NOTHING_TO_REVIEW
                job.comments = []
                return self._complete(job)
            context = self._build_context(job, fetched)

            self._advance(job, REVIEWING)
            result = self._review(job, context)
            job.summary = result.summary
            job.comments = list(result.comments)
            job.tokens_used += result.tokens_used

            self._advance(job, DELIVERING)
            self._deliver(job, result)
            return self._complete(job)
        except PipelineError as e:
            return self._on_error(job, e)
        except Exception as e:
            logger.exception("Job %s: unexpected error in %s step", job.job_id, job.status)
            return self._fail(job, f"Internal error: {e}", "InternalError")

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    def _reserve_quota(self, job: ReviewJob) -> None:
        # A unit taken by an earlier attempt is still held; retries never pay twice.
        if job.quota_period is not None:
            return
        decision = self.gate.try_consume(job.account_id, job.plan_tier)
        if not decision.granted:
            raise QuotaExceededError(
                f"Review limit reached for plan '{job.plan_tier}' ({decision.used}/{decision.limit} "
                f"in {decision.period}). Upgrade your plan or wait for the next billing period."
            )
        job.quota_period = decision.period
        self.store.save(job)

    def _build_context(self, job: ReviewJob, fetched: FetchedContext) -> ReviewContext:
        diff, truncated = truncate(fetched.diff, self.max_diff_chars)
        contents = {}
        for path, content in fetched.file_contents.items():
            contents[path], cut = truncate(content, self.max_chars_per_file)
            truncated = truncated or cut
        if truncated:
            logger.warning("Job %s: diff or file contents truncated to the size limit", job.job_id)
        return ReviewContext(
            diff=diff,
            file_contents=contents,
            rules=self.rules_for(job.account_id, job.repo),
            truncated=truncated,
        )

    def _review(self, job: ReviewJob, context: ReviewContext) -> AIReviewResult:
        provider = self.providers.get(job.provider)
        if provider is None:
            raise PermanentProviderError(f"Provider {job.provider!r} is not configured.")
        result = provider.review(context.diff, context.file_contents, context.rules, model=job.model)

        # GitHub rejects the whole review if any comment points outside the diff.
        visible = commentable_lines(context.diff)
        kept = []
        for comment in result.comments:
            if comment.line in visible.get(comment.path, ()):
                kept.append(comment)
            else:
                logger.debug("Job %s: dropping comment on %s:%d (not in diff)", job.job_id, comment.path, comment.line)
        if len(kept) < len(result.comments):
            logger.warning(
                "Job %s: dropped %d comment(s) outside the diff", job.job_id, len(result.comments) - len(kept)
            )
        summary = result.summary
        if context.truncated:
            summary = f"{PARTIAL_REVIEW_NOTE}\n\n{summary}"
        return AIReviewResult(summary=summary, comments=kept, tokens_used=result.tokens_used)

    def _deliver(self, job: ReviewJob, result: AIReviewResult) -> None:
        if not self.store.claim_delivery(job.job_id):
            # Another attempt started delivering. Whether it posted is unknown,
            # so this job must not post again.
            raise DeliveryRejectedError("Delivery was already started for this job", partial=True)
        job.delivery = DELIVERY_STARTED
        try:
            self.sink.deliver(job.repo, job.pr_number, result, job.job_id, job.token)
        except PipelineError as e:
            if not e.partial:
                self.store.release_delivery(job.job_id)
                job.delivery = DELIVERY_PENDING
            raise
        job.delivery = DELIVERY_DELIVERED

    # ------------------------------------------------------------------ #
    # Finalization                                                         #
    # ------------------------------------------------------------------ #

    def _advance(self, job: ReviewJob, status: str) -> None:
        job.advance(status, self._clock())
        self.store.save(job)

    def _on_error(self, job: ReviewJob, error: PipelineError) -> AttemptOutcome:
        message = str(error) or error.kind
        if error.retryable and not error.partial:
            logger.warning("Job %s: transient %s during %s: %s", job.job_id, error.kind, job.status, message)
            job.last_error = message
            job.error_kind = error.kind
            self.store.save(job)
            return AttemptOutcome(OUTCOME_RETRY, message, error.kind)
        if error.partial:
            message = f"Review was partially delivered: {message}"
        return self._fail(job, message, error.kind)

    def _complete(self, job: ReviewJob) -> AttemptOutcome:
        job.advance(COMPLETED, self._clock())
        job.locked = False
        job.last_error = None
        job.error_kind = None
        # The quota unit stays consumed: success commits it.
        self.store.save(job)
        logger.info("Job %s completed with %d comment(s)", job.job_id, len(job.comments))
        return AttemptOutcome(OUTCOME_COMPLETED)

    def _fail(self, job: ReviewJob, message: str, kind: str) -> AttemptOutcome:
        self.fail(job, message, kind)
        return AttemptOutcome(OUTCOME_FAILED, message, kind)

    def fail(self, job: ReviewJob, message: str, kind: str) -> None:
        """Finalize a job as FAILED and give back any quota unit it holds."""
        if job.status != FAILED:
            job.advance(FAILED, self._clock())
        job.locked = False
        job.last_error = message
        job.error_kind = kind
        self.release_quota(job)
        self.store.save(job)
        logger.error("Job %s failed (%s): %s", job.job_id, kind, message)

    def release_quota(self, job: ReviewJob) -> None:
        if job.quota_period is None:
            return
        self.gate.rollback(job.account_id, job.quota_period)
        logger.debug("Job %s: returned quota unit for %s", job.job_id, job.quota_period)
        job.quota_period = None
