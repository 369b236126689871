"""Job store interface and the in-memory backend.

The scheduler and the pipeline depend on BaseJobStore, not on a concrete
backend. Durability is the backend's concern: MemoryJobStore is for tests and
single-process runs, prsentry_store.sqlite.SQLiteJobStore survives restarts
and is safe to share between worker processes.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from prsentry_core.models import (
    DELIVERY_PENDING,
    DELIVERY_STARTED,
    FAILED,
    QUEUED,
    ReviewJob,
)


class BaseJobStore(ABC):
    """Pluggable persistence for review jobs.

    Every method that hands out work (``claim``, ``claim_delivery``) must be
    atomic across all workers sharing the store: that is what guarantees at
    most one in-flight attempt and at most one delivery per job.
    """

    @abstractmethod
    def add(self, job: ReviewJob) -> None:
        """Persist a newly admitted job."""

    @abstractmethod
    def get(self, job_id: str) -> ReviewJob | None:
        """Return a copy of the job, or None if it does not exist."""

    @abstractmethod
    def save(self, job: ReviewJob) -> None:
        """Write back a job the caller holds the claim for.

        A cancel reason recorded concurrently by ``cancel`` is preserved.
        """

    @abstractmethod
    def claim(self, now: float, job_id: str | None = None) -> ReviewJob | None:
        """Lock one eligible job for an attempt and return it.

        Eligible means QUEUED, not locked and ``available_at <= now``. When
        ``job_id`` is given only that job is considered. The returned job has
        ``locked`` set and ``attempts`` already incremented. Returns None when
        nothing is eligible.
        """

    @abstractmethod
    def claim_delivery(self, job_id: str) -> bool:
        """Move delivery from pending to started. False if already claimed."""

    @abstractmethod
    def release_delivery(self, job_id: str) -> None:
        """Return a started delivery to pending (nothing was posted)."""

    @abstractmethod
    def cancel(self, job_id: str, reason: str, now: float) -> ReviewJob | None:
        """Cancel a job between attempts.

        A queued, unlocked job is marked FAILED immediately. A locked job only
        records the reason; the worker finalizes it once its attempt returns.
        Terminal jobs are left alone. Returns the resulting job or None.
        """

    @abstractmethod
    def list_jobs(
        self,
        account_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[ReviewJob]:
        """Return jobs newest first, optionally filtered."""

    @abstractmethod
    def next_available_at(self) -> float | None:
        """Earliest ``available_at`` among unlocked queued jobs, or None."""

    @abstractmethod
    def count_active(self) -> int:
        """Number of jobs that are not yet terminal."""

    def close(self) -> None:
        """Release any resources held by the store. Default is a no-op."""


class MemoryJobStore(BaseJobStore):
    """Jobs held in a dict behind one lock. Nothing survives the process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: dict[str, ReviewJob] = {}

    def add(self, job: ReviewJob) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} already exists.")
            self._jobs[job.job_id] = job.copy()

    def get(self, job_id: str) -> ReviewJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    def save(self, job: ReviewJob) -> None:
        with self._lock:
            stored = job.copy()
            existing = self._jobs.get(job.job_id)
            if existing is not None and existing.cancel_reason and not stored.cancel_reason:
                stored.cancel_reason = existing.cancel_reason
            self._jobs[job.job_id] = stored

    def claim(self, now: float, job_id: str | None = None) -> ReviewJob | None:
        with self._lock:
            if job_id is not None:
                candidates = [self._jobs[job_id]] if job_id in self._jobs else []
            else:
                candidates = sorted(self._jobs.values(), key=lambda j: (j.available_at, j.created_at))
            for job in candidates:
                if job.status == QUEUED and not job.locked and job.available_at <= now:
                    job.locked = True
                    job.attempts += 1
                    job.updated_at = now
                    return job.copy()
        return None

    def claim_delivery(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.delivery != DELIVERY_PENDING:
                return False
            job.delivery = DELIVERY_STARTED
            return True

    def release_delivery(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and job.delivery == DELIVERY_STARTED:
                job.delivery = DELIVERY_PENDING

    def cancel(self, job_id: str, reason: str, now: float) -> ReviewJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if not job.is_terminal:
                job.cancel_reason = reason
                if not job.locked:
                    job.status = FAILED
                    job.last_error = f"Cancelled: {reason}"
                    job.error_kind = "Cancelled"
                    job.updated_at = now
            return job.copy()

    def list_jobs(
        self,
        account_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[ReviewJob]:
        with self._lock:
            jobs = [
                j.copy()
                for j in self._jobs.values()
                if (account_id is None or j.account_id == account_id) and (status is None or j.status == status)
            ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit] if limit else jobs

    def next_available_at(self) -> float | None:
        with self._lock:
            times = [j.available_at for j in self._jobs.values() if j.status == QUEUED and not j.locked]
        return min(times) if times else None

    def count_active(self) -> int:
        with self._lock:
            return sum(1 for j in self._jobs.values() if not j.is_terminal)
