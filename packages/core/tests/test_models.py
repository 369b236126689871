"""Tests for ReviewJob state transitions."""

import pytest

from prsentry_core.models import (
    COMPLETED,
    DELIVERING,
    FAILED,
    FETCHING,
    QUEUED,
    REVIEWING,
    ReviewComment,
    ReviewJob,
    comment_from_dict,
    comment_to_dict,
)


def _job(**kwargs):
    return ReviewJob(repo="owner/repo", pr_number=1, account_id="acct", plan_tier="hobby", provider="deepseek", **kwargs)


class TestAdvance:
    def test_forward_path(self):
        job = _job()
        for status in (FETCHING, REVIEWING, DELIVERING, COMPLETED):
            job.advance(status, now=100.0)
        assert job.status == COMPLETED
        assert job.is_terminal
        assert job.updated_at == 100.0

    def test_skipping_forward_is_allowed(self):
        job = _job()
        job.advance(COMPLETED)
        assert job.status == COMPLETED

    def test_cannot_move_backwards(self):
        job = _job(status=REVIEWING)
        with pytest.raises(ValueError):
            job.advance(FETCHING)

    def test_cannot_stay_in_place(self):
        job = _job(status=FETCHING)
        with pytest.raises(ValueError):
            job.advance(FETCHING)

    @pytest.mark.parametrize("status", [QUEUED, FETCHING, REVIEWING, DELIVERING])
    def test_failed_reachable_from_any_active_status(self, status):
        job = _job(status=status)
        job.advance(FAILED)
        assert job.status == FAILED

    @pytest.mark.parametrize("terminal", [COMPLETED, FAILED])
    def test_terminal_is_final(self, terminal):
        job = _job(status=terminal)
        with pytest.raises(ValueError):
            job.advance(FAILED)
        with pytest.raises(ValueError):
            job.requeue(0.0)


def test_requeue_resets_to_queued():
    job = _job(status=REVIEWING, attempts=1)
    job.requeue(available_at=50.0, now=10.0)
    assert job.status == QUEUED
    assert job.available_at == 50.0
    assert job.attempts == 1


def test_copy_does_not_share_comments():
    job = _job(comments=[ReviewComment(path="a.py", line=1, body="x")])
    clone = job.copy()
    clone.comments.append(ReviewComment(path="b.py", line=2, body="y"))
    assert len(job.comments) == 1


def test_job_ids_are_unique():
    assert _job().job_id != _job().job_id


def test_comment_dict_conversion():
    comment = ReviewComment(path="a.py", line=3, body="Use a constant.")
    assert comment_to_dict(comment) == {"path": "a.py", "line": 3, "body": "Use a constant."}
    assert comment_from_dict({"path": "a.py", "line": "3", "body": "Use a constant."}) == comment
