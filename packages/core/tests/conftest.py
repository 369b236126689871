"""Fakes for the pipeline's collaborators, shared by the pipeline and scheduler tests."""

from __future__ import annotations

import threading

import pytest

from prsentry_core.gate import MemoryRateGate
from prsentry_core.interfaces import ContextFetcher, FetchedContext, ResultSink
from prsentry_core.jobs import MemoryJobStore
from prsentry_core.models import AIReviewResult, ReviewComment
from prsentry_core.pipeline import ReviewPipeline
from prsentry_core.scheduler import JobScheduler

# One added line at new-file line 2 of src/app.py.
SIMPLE_DIFF = (
    "diff --git a/src/app.py b/src/app.py\n"
    "--- a/src/app.py\n"
    "+++ b/src/app.py\n"
    "@@ -1,2 +1,3 @@\n"
    " import os\n"
    "+password = 'hunter2'\n"
    " print(os.name)\n"
)


class FakeFetcher(ContextFetcher):
    def __init__(self, diff=SIMPLE_DIFF, contents=None, errors=None):
        self.diff = diff
        self.contents = contents if contents is not None else {"src/app.py": "import os\npassword = 'hunter2'\n"}
        # Raised in order, one per call; the last entry repeats. None means success.
        self.errors = list(errors or [])
        self.calls = 0

    def fetch_context(self, repo, pr_number, token=None):
        self.calls += 1
        if self.errors:
            error = self.errors.pop(0) if len(self.errors) > 1 else self.errors[0]
            if error is not None:
                raise error
        return FetchedContext(diff=self.diff, file_contents=dict(self.contents))


class FakeProvider:
    def __init__(self, result=None, error=None):
        self.result = result or AIReviewResult(
            summary="One issue found.",
            comments=[ReviewComment(path="src/app.py", line=2, body="Hardcoded secret.")],
            tokens_used=42,
        )
        self.error = error
        self.calls = []

    def review(self, diff, file_contents, rules, model=None):
        self.calls.append({"diff": diff, "file_contents": file_contents, "rules": rules, "model": model})
        if self.error is not None:
            raise self.error
        return AIReviewResult(
            summary=self.result.summary,
            comments=list(self.result.comments),
            tokens_used=self.result.tokens_used,
        )


class FakeSink(ResultSink):
    def __init__(self, error=None, delay=None):
        self.error = error
        self.delay = delay
        self.deliveries = []
        self._lock = threading.Lock()

    def deliver(self, repo, pr_number, result, job_id, token=None):
        if self.delay is not None:
            self.delay.wait(2)
        if self.error is not None:
            raise self.error
        with self._lock:
            self.deliveries.append((repo, pr_number, job_id, result))


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def store():
    return MemoryJobStore()


@pytest.fixture
def gate():
    return MemoryRateGate()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fakes():
    """The fake classes, for tests that need a custom instance."""
    return {"fetcher": FakeFetcher, "provider": FakeProvider, "sink": FakeSink, "diff": SIMPLE_DIFF}


@pytest.fixture
def pipeline(store, fetcher, gate, sink, provider, clock):
    return ReviewPipeline(
        store=store,
        fetcher=fetcher,
        gate=gate,
        sink=sink,
        providers={"fake": provider},
        clock=clock,
    )


@pytest.fixture
def scheduler(store, pipeline, clock):
    return JobScheduler(
        store=store,
        pipeline=pipeline,
        concurrency=2,
        max_attempts=3,
        backoff_base=2.0,
        backoff_max=60.0,
        poll_interval=0.01,
        default_provider="fake",
        clock=clock,
        sleep=clock.sleep,
    )
