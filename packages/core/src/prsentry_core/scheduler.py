"""Job scheduler: admission, dispatch, retry with backoff, dead-lettering.

A fixed pool of worker threads pulls eligible jobs from the job store. Each
worker runs exactly one attempt at a time, so the pool size is also the cap
on simultaneous AI-provider calls. The store's atomic ``claim`` guarantees
that one attempt slot of a job goes to one worker only, even when several
scheduler processes share a SQLite store.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from prsentry_core.errors import JobNotFoundError
from prsentry_core.jobs import BaseJobStore
from prsentry_core.models import FAILED, ReviewJob
from prsentry_core.pipeline import OUTCOME_RETRY, AttemptOutcome, ReviewPipeline

logger = logging.getLogger(__name__)

RETRIES_EXHAUSTED = "RetriesExhausted"
CANCELLED = "Cancelled"


class JobScheduler:
    def __init__(
        self,
        store: BaseJobStore,
        pipeline: ReviewPipeline,
        concurrency: int = 5,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        backoff_max: float = 300.0,
        poll_interval: float = 1.0,
        default_provider: str = "deepseek",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.poll_interval = poll_interval
        self.default_provider = default_provider
        self._clock = clock
        self._sleep = sleep
        self._stop = threading.Event()
        self._wakeup = threading.Condition()
        self._workers: list[threading.Thread] = []

    # ------------------------------------------------------------------ #
    # Admission and status                                                 #
    # ------------------------------------------------------------------ #

    def enqueue(self, job: ReviewJob) -> str:
        now = self._clock()
        job.available_at = job.available_at or now
        job.created_at = job.updated_at = now
        self.store.add(job)
        logger.info("Enqueued job %s for %s#%s (account %s)", job.job_id, job.repo, job.pr_number, job.account_id)
        self._notify()
        return job.job_id

    def submit_review(
        self,
        account_id: str,
        plan_tier: str,
        repo: str,
        pr_number: int,
        token: str | None = None,
        provider: str | None = None,
        model: str | None = None,
    ) -> str:
        """Admit a review request and return its job id.

        Target validation happens in the first attempt so a malformed request
        still gets a queryable job with a failure reason.
        """
        job = ReviewJob(
            repo=repo,
            pr_number=pr_number,
            account_id=account_id,
            plan_tier=plan_tier,
            provider=provider or self.default_provider,
            model=model,
            token=token,
        )
        return self.enqueue(job)

    def get_status(self, job_id: str) -> ReviewJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def cancel(self, job_id: str, reason: str = "cancelled by request") -> ReviewJob:
        """Cancel a job before its next attempt.

        An attempt already in flight runs to completion; if it ends in a retry
        the job is failed instead of being requeued.
        """
        job = self.store.cancel(job_id, reason, self._clock())
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status == FAILED and job.error_kind == CANCELLED and job.quota_period is not None:
            self.pipeline.release_quota(job)
            self.store.save(job)
        logger.info("Cancel requested for job %s: %s", job_id, reason)
        return job

    # ------------------------------------------------------------------ #
    # Dispatch                                                             #
    # ------------------------------------------------------------------ #

    def backoff_delay(self, attempts: int) -> float:
        """Delay before the attempt that follows attempt number ``attempts``."""
        return min(self.backoff_max, self.backoff_base * (2 ** max(0, attempts - 1)))

    def dispatch(self, job_id: str | None = None) -> ReviewJob | None:
        """Claim one eligible job and run exactly one attempt of it.

        Returns the job as it stands after the attempt, or None when nothing
        was eligible (or ``job_id`` is already being worked on).
        """
        job = self.store.claim(self._clock(), job_id)
        if job is None:
            return None
        outcome = self.pipeline.run_attempt(job)
        if outcome.status == OUTCOME_RETRY:
            self._after_transient_failure(job, outcome)
        else:
            self.ack(job)
        return job

    def _after_transient_failure(self, job: ReviewJob, outcome: AttemptOutcome) -> None:
        current = self.store.get(job.job_id)
        if current is not None and current.cancel_reason:
            self.dead_letter(job, f"Cancelled: {current.cancel_reason}", CANCELLED)
        elif job.attempts >= self.max_attempts:
            self.dead_letter(
                job, f"Gave up after {job.attempts} attempt(s). Last error: {outcome.error}", RETRIES_EXHAUSTED
            )
        else:
            self.retry(job, self.backoff_delay(job.attempts))

    def ack(self, job: ReviewJob) -> None:
        """Release the claim on a job whose attempt reached a terminal state."""
        if job.locked:
            job.locked = False
            self.store.save(job)
        logger.debug("Job %s acked as %s", job.job_id, job.status)

    def retry(self, job: ReviewJob, delay: float) -> None:
        now = self._clock()
        job.requeue(now + delay, now)
        job.locked = False
        self.store.save(job)
        logger.info("Job %s: retry %d/%d in %.1fs", job.job_id, job.attempts + 1, self.max_attempts, delay)
        self._notify()

    def dead_letter(self, job: ReviewJob, reason: str, kind: str = RETRIES_EXHAUSTED) -> None:
        self.pipeline.fail(job, reason, kind)

    def run_until_idle(self, timeout: float | None = None) -> None:
        """Process jobs in the calling thread until none is left active.

        Sleeps until the next retry becomes eligible. Used by the CLI's
        ``--wait`` mode and by tests.
        """
        deadline = None if timeout is None else self._clock() + timeout
        while self.store.count_active():
            if self.dispatch() is not None:
                continue
            next_at = self.store.next_available_at()
            if next_at is None:
                # Remaining jobs are locked by another worker.
                wait = self.poll_interval
            else:
                wait = max(0.0, next_at - self._clock())
            if deadline is not None and self._clock() + wait > deadline:
                raise TimeoutError("Jobs still active when the timeout expired")
            self._sleep(wait)

    # ------------------------------------------------------------------ #
    # Worker pool                                                          #
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        if self._workers:
            return
        self._stop.clear()
        for i in range(self.concurrency):
            worker = threading.Thread(target=self._worker_loop, name=f"prsentry-worker-{i}", daemon=True)
            worker.start()
            self._workers.append(worker)
        logger.info("Started %d worker(s)", self.concurrency)

    def stop(self, timeout: float | None = None) -> None:
        """Stop pulling new jobs; attempts in flight run to completion."""
        self._stop.set()
        self._notify(all_workers=True)
        for worker in self._workers:
            worker.join(timeout)
        self._workers = []
        logger.info("Workers stopped")

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            try:
                job = self.dispatch()
            except Exception:
                # A store failure must not kill the worker thread.
                logger.exception("Worker %s: dispatch failed", threading.current_thread().name)
                job = None
            if job is not None:
                continue
            with self._wakeup:
                if not self._stop.is_set():
                    self._wakeup.wait(self._idle_wait())

    def _idle_wait(self) -> float:
        next_at = self.store.next_available_at()
        if next_at is None:
            return self.poll_interval
        return min(self.poll_interval, max(0.0, next_at - self._clock()))

    def _notify(self, all_workers: bool = False) -> None:
        with self._wakeup:
            if all_workers:
                self._wakeup.notify_all()
            else:
                self._wakeup.notify()
