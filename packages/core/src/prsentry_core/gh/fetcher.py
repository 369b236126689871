"""GitHub-backed ContextFetcher.

All file contents are read at the PR head SHA, so the diff and the files the
model sees belong to the same commit snapshot.
"""

from __future__ import annotations

import logging

from github import GithubException

from prsentry_core.interfaces import ContextFetcher, FetchedContext
from prsentry_core.gh.pull_request import GITHUB_ERRORS, get_client, get_pull, get_repo, translate_error
from prsentry_core.utils.code import is_code_file, is_excluded
from prsentry_core.utils.diff import file_diff

logger = logging.getLogger(__name__)


class GitHubContextFetcher(ContextFetcher):
    def __init__(self, default_token: str | None = None, timeout: float = 30.0, exclude: list[str] | None = None):
        self._default_token = default_token
        self._timeout = timeout
        self._exclude = list(exclude or [])

    def fetch_context(self, repo: str, pr_number: int, token: str | None = None) -> FetchedContext:
        client = get_client(token or self._default_token, self._timeout)
        try:
            this_repo = get_repo(client, repo)
            this_pr = get_pull(this_repo, pr_number)
            head_sha = this_pr.head.sha
            files = sorted(this_pr.get_files(), key=lambda f: f.filename)
        except GITHUB_ERRORS as e:
            raise translate_error(e, f"fetching {repo}#{pr_number}") from e

        diff_parts = []
        contents: dict[str, str] = {}
        for file in files:
            if file.patch:
                diff_parts.append(file_diff(file.filename, file.patch, file.previous_filename))
            if file.status == "removed":
                continue
            if not is_code_file(file.filename) or is_excluded(file.filename, self._exclude):
                logger.debug("Not sending %s as context", file.filename)
                continue
            content = self._get_content(this_repo, file.filename, head_sha)
            if content is not None:
                contents[file.filename] = content

        logger.info("Fetched %s#%d: %d file(s), %d with content", repo, pr_number, len(files), len(contents))
        return FetchedContext(diff="".join(diff_parts), file_contents=contents)

    def _get_content(self, repo, path: str, ref: str) -> str | None:
        try:
            content = repo.get_contents(path, ref=ref)
        except GithubException as e:
            if e.status == 404:
                # Submodules, symlinks outside the repo and similar: review the diff only.
                logger.warning("Could not fetch %s@%s: not found", path, ref[:7])
                return None
            raise translate_error(e, f"fetching {path}") from e
        except GITHUB_ERRORS as e:
            raise translate_error(e, f"fetching {path}") from e
        if isinstance(content, list):
            return None  # a directory
        return content.decoded_content.decode("utf-8", errors="replace")
