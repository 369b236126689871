"""Pipeline error taxonomy.

Collaborators (fetcher, provider, sink, gate) raise these. The pipeline
catches them at each step boundary and turns them into an AttemptOutcome, so
nothing above the pipeline has to reason about exception hierarchies: only
the ``retryable`` flag matters to the scheduler.
"""

from __future__ import annotations


class PipelineError(Exception):
    retryable: bool = False

    def __init__(self, message: str = "", partial: bool = False):
        super().__init__(message)
        # Set by a delivery sink when part of the review was already posted.
        self.partial = partial

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(PipelineError):
    """The review target is malformed (bad repo name, bad PR number)."""


class QuotaExceededError(PipelineError):
    """The account has no review units left for the current billing period."""


class TransientIOError(PipelineError):
    """Network failure, timeout, provider rate limit or 5xx."""

    retryable = True


class PermanentProviderError(PipelineError):
    """Bad credentials, rejected request or content-policy refusal."""


class FetchRejectedError(PipelineError):
    """The pull request does not exist or the token cannot read it."""


class ParseError(PipelineError):
    """The model output could not be read as a review.

    Never escapes the provider: parsing degrades to a partial result.
    """


class DeliveryRejectedError(PipelineError):
    """The hosting platform refused the review (PR closed, merged, locked)."""


class JobNotFoundError(KeyError):
    pass
