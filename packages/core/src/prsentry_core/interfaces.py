"""Narrow interfaces to the systems the pipeline talks to over the network.

Both are called from worker threads. Implementations raise TransientIOError
for failures worth retrying and FetchRejectedError / DeliveryRejectedError
for failures no retry can fix.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from prsentry_core.models import AIReviewResult


@dataclass
class FetchedContext:
    diff: str
    file_contents: dict[str, str] = field(default_factory=dict)


class ContextFetcher(ABC):
    @abstractmethod
    def fetch_context(self, repo: str, pr_number: int, token: str | None = None) -> FetchedContext:
        """Return the pull-request diff and the contents of the changed files."""


class ResultSink(ABC):
    @abstractmethod
    def deliver(
        self,
        repo: str,
        pr_number: int,
        result: AIReviewResult,
        job_id: str,
        token: str | None = None,
    ) -> None:
        """Post the review to the pull request.

        ``job_id`` lets the sink recognise a review it already posted for the
        same job and skip posting it again.
        """
