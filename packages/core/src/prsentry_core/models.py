"""Review pipeline data models.

ReviewJob is the only record that outlives a single attempt. Everything else
(ReviewContext, AIReviewResult) is built fresh per attempt and handed between
pipeline steps.
"""

from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass, field

QUEUED = "queued"
FETCHING = "fetching"
REVIEWING = "reviewing"
DELIVERING = "delivering"
COMPLETED = "completed"
FAILED = "failed"

# Forward order of the state machine. Retry is the only way back to QUEUED.
STATUS_ORDER = (QUEUED, FETCHING, REVIEWING, DELIVERING, COMPLETED)
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})

DELIVERY_PENDING = "pending"
DELIVERY_STARTED = "started"
DELIVERY_DELIVERED = "delivered"


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ReviewComment:
    """One inline comment anchored to a line of the new file."""

    path: str
    line: int
    body: str


@dataclass
class AIReviewResult:
    summary: str
    comments: list[ReviewComment] = field(default_factory=list)
    tokens_used: int = 0


@dataclass
class ReviewContext:
    """Everything the provider needs for one attempt.

    ``truncated`` is set when the diff or any file content was cut to fit the
    configured size ceiling; the summary then carries a partial-review note.
    """

    diff: str
    file_contents: dict[str, str] = field(default_factory=dict)
    rules: str = ""
    truncated: bool = False


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    timeout: float = 120.0


@dataclass
class ReviewJob:
    repo: str
    pr_number: int
    account_id: str
    plan_tier: str
    provider: str
    model: str | None = None
    token: str | None = None
    job_id: str = field(default_factory=new_job_id)
    status: str = QUEUED
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    available_at: float = 0.0
    locked: bool = False
    last_error: str | None = None
    error_kind: str | None = None
    quota_period: str | None = None
    delivery: str = DELIVERY_PENDING
    cancel_reason: str | None = None
    summary: str | None = None
    comments: list[ReviewComment] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def copy(self) -> ReviewJob:
        return dataclasses.replace(self, comments=list(self.comments))

    def advance(self, status: str, now: float | None = None) -> None:
        """Move the job forward to ``status``.

        FAILED is reachable from any non-terminal status. Any other move must
        go strictly forward through STATUS_ORDER.
        """
        if self.is_terminal:
            raise ValueError(f"Job {self.job_id} is already {self.status}; cannot move to {status}.")
        if status != FAILED:
            if STATUS_ORDER.index(status) <= STATUS_ORDER.index(self.status):
                raise ValueError(f"Job {self.job_id} cannot move from {self.status} back to {status}.")
        self.status = status
        self.updated_at = now if now is not None else time.time()

    def requeue(self, available_at: float, now: float | None = None) -> None:
        """Reset a non-terminal job to QUEUED for another attempt."""
        if self.is_terminal:
            raise ValueError(f"Job {self.job_id} is already {self.status}; cannot requeue.")
        self.status = QUEUED
        self.available_at = available_at
        self.updated_at = now if now is not None else time.time()


def comment_to_dict(comment: ReviewComment) -> dict:
    return {"path": comment.path, "line": comment.line, "body": comment.body}


def comment_from_dict(d: dict) -> ReviewComment:
    return ReviewComment(path=d.get("path", ""), line=int(d.get("line", 0)), body=d.get("body", ""))
