"""Tests for GitHub pull request helper functions."""

from unittest.mock import MagicMock, patch

import requests
from github import GithubException, RateLimitExceededException

from prsentry_core.errors import DeliveryRejectedError, FetchRejectedError, TransientIOError
from prsentry_core.gh.pull_request import (
    get_client,
    has_review_for_job,
    job_marker,
    translate_delivery_error,
    translate_error,
)

JOB_ID = "0f" * 16


def _review_with_body(body):
    r = MagicMock()
    r.body = body
    return r


class TestHasReviewForJob:
    def test_false_when_no_reviews(self):
        pr = MagicMock()
        pr.get_reviews.return_value = []
        assert has_review_for_job(pr, JOB_ID) is False

    def test_true_when_marker_present(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review_with_body(f"Summary\n{job_marker(JOB_ID)}")]
        assert has_review_for_job(pr, JOB_ID) is True

    def test_ignores_other_jobs(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review_with_body(job_marker("another-job")), _review_with_body("LGTM")]
        assert has_review_for_job(pr, JOB_ID) is False

    def test_handles_none_body(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review_with_body(None)]
        assert has_review_for_job(pr, JOB_ID) is False


def test_job_marker_is_hidden_html_comment():
    assert job_marker("abc") == "<!-- prsentry-job: abc -->"


def test_get_client_disables_pygithub_retries():
    with patch("prsentry_core.gh.pull_request.Github") as github:
        get_client("ghp_token", 12.5)
    kwargs = github.call_args.kwargs
    assert kwargs["retry"] is None
    assert kwargs["timeout"] == 12
    assert kwargs["auth"] is not None


def test_get_client_without_token_is_anonymous():
    with patch("prsentry_core.gh.pull_request.Github") as github:
        get_client(None, 30)
    assert github.call_args.kwargs["auth"] is None


class TestTranslateError:
    def test_not_found_is_rejected(self):
        error = translate_error(GithubException(404, {"message": "Not Found"}, None), "fetching o/r#1")
        assert isinstance(error, FetchRejectedError)
        assert "not found" in str(error)

    def test_forbidden_is_rejected(self):
        error = translate_error(GithubException(403, {"message": "Resource not accessible"}, None), "fetching")
        assert isinstance(error, FetchRejectedError)
        assert "Resource not accessible" in str(error)

    def test_rate_limit_is_transient(self):
        exc = RateLimitExceededException(403, {"message": "API rate limit exceeded"}, None)
        assert isinstance(translate_error(exc, "fetching"), TransientIOError)

    def test_server_error_is_transient(self):
        assert isinstance(translate_error(GithubException(502, "Bad Gateway", None), "fetching"), TransientIOError)

    def test_network_error_is_transient(self):
        exc = requests.exceptions.ConnectionError("connection reset")
        assert isinstance(translate_error(exc, "fetching"), TransientIOError)

    def test_delivery_variant(self):
        error = translate_delivery_error(GithubException(422, {"message": "Unprocessable"}, None), "posting")
        assert isinstance(error, DeliveryRejectedError)
