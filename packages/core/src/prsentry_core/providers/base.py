"""Base provider implementing the Template Method pattern.

All providers share the same review algorithm:
    review() → _build_system_prompt() + _build_user_prompt()
             → _call_api()   ← only this differs per provider
             → _parse()

Subclasses implement two things only:
  - __init__: build and store the SDK client
  - _call_api: make one raw API call and return (text, tokens_used)

Retries are not done here. A failed call is translated into TransientIOError
or PermanentProviderError and the job scheduler decides what happens next.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod

from prsentry_core.errors import ParseError, PermanentProviderError, PipelineError, TransientIOError
from prsentry_core.models import AIReviewResult, ProviderConfig, ReviewComment
from prsentry_core.utils.diff import number_diff

logger = logging.getLogger(__name__)

_MAX_TOKENS = 4096
_NO_SUMMARY = "No summary provided."

_PATH_KEYS = ("file", "path", "filename", "file_path")
_LINE_KEYS = ("lineNumber", "line", "line_number", "start_line")
_BODY_KEYS = ("comment", "body", "message", "text")


class BaseProvider(ABC):
    MODEL: str = ""
    TEMPERATURE: float = 0.2
    MAX_TOKENS: int = _MAX_TOKENS

    def __init__(self, config: ProviderConfig):
        if not config.api_key:
            raise PermanentProviderError(f"No API key configured for provider {config.provider!r}.")
        self.config = config
        self.name = config.provider

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def review(
        self,
        diff: str,
        file_contents: dict[str, str],
        rules: str,
        model: str | None = None,
    ) -> AIReviewResult:
        """Review a whole pull request and return the normalized result.

        Raises TransientIOError or PermanentProviderError when the model call
        fails. Malformed output never raises: bad comments are dropped and an
        unreadable response becomes a summary-only result.
        """
        system = self._build_system_prompt(rules)
        user = self._build_user_prompt(diff, file_contents)
        model_name = model or self.config.model or self.MODEL
        try:
            raw, tokens_used = self._call_api(system, user, model_name)
        except PipelineError:
            raise
        except Exception as e:
            raise self._translate_error(e) from e
        result = self._parse(raw or "")
        result.tokens_used = tokens_used
        return result

    # ------------------------------------------------------------------ #
    # Abstract - implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str, model: str) -> tuple[str, int]:
        """Make a single API call and return the raw text and tokens used."""

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _is_transport_error(self, exc: Exception) -> bool:
        """Return True for errors raised before any HTTP status was received."""
        return isinstance(exc, (TimeoutError, ConnectionError))

    def _translate_error(self, exc: Exception) -> PipelineError:
        name = self.__class__.__name__
        if self._is_transport_error(exc):
            logger.warning("%s transport error: %s", name, exc)
            return TransientIOError(f"{name}: {exc}")

        status = getattr(exc, "status_code", None)
        if status is None:
            status = getattr(getattr(exc, "response", None), "status_code", None)
        if isinstance(status, int) and (status in (408, 409, 429) or status >= 500):
            logger.warning("%s API error %s: %s", name, status, exc)
            return TransientIOError(f"{name} returned {status}: {exc}")

        logger.error("%s API rejected the request (%s): %s", name, status, exc)
        return PermanentProviderError(f"{name} rejected the request ({status}): {exc}")

    def _build_system_prompt(self, rules: str) -> str:
        return f"""You are an expert Senior Software Engineer performing a code review.

PRIMARY OBJECTIVE - FOLLOW THESE PROJECT-SPECIFIC REVIEW RULES:

{rules or "No specific rules provided. Apply general best practices."}

ALWAYS DETECT:
- Security vulnerabilities: injection, hardcoded secrets, weak cryptography, missing auth checks
- Logic errors: missing null checks, off-by-one errors, swallowed exceptions
- Performance issues: N+1 queries, unbounded collections, needlessly quadratic loops

OUTPUT FORMAT:
Respond with a valid JSON object:
{{
  "summary": "Markdown summary of the review",
  "comments": [
    {{"file": "path/to/file.py", "lineNumber": 10, "comment": "Explanation and suggested fix"}}
  ]
}}

TECHNICAL GUIDELINES:
1. Line numbers: use ONLY the numbers shown at the start of lines in the numbered diff.
2. File paths: must exactly match the path in the diff header.
3. Comment only on added lines (prefixed with '+').
4. If everything is good, return an empty comments array and the summary "LGTM".
5. Do not return any text outside the JSON object."""

    def _build_user_prompt(self, diff: str, file_contents: dict[str, str]) -> str:
        parts = []
        if file_contents:
            parts.append("## Full File Contents\n\nThe complete files that were modified, for context:\n")
            for path, content in file_contents.items():
                parts.append(f"### File: {path}\n```\n{content}\n```\n")
            parts.append("---\n")
        parts.append(f"## Numbered Diff\n\n{number_diff(diff)}")
        return "\n".join(parts)

    def _load_json(self, raw: str):
        # Strip only the outer ```json ... ``` fence, not backticks inside values.
        cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ParseError(f"response is not valid JSON: {e}") from e

    def _parse(self, raw: str) -> AIReviewResult:
        """Normalize loosely structured model output into an AIReviewResult.

        Accepts a ``{"summary", "comments"}`` object or a bare list of
        comments. Anything unreadable becomes a summary-only result.
        """
        try:
            data = self._load_json(raw)
        except ParseError as e:
            logger.warning("%s: %s: %s", self.__class__.__name__, e, raw[:200])
            return AIReviewResult(summary=raw.strip() or _NO_SUMMARY)

        if isinstance(data, list):
            summary, items = "", data
        elif isinstance(data, dict):
            summary = data.get("summary") or _NO_SUMMARY
            items = data.get("comments") or []
        else:
            logger.warning("%s: unexpected JSON type %s", self.__class__.__name__, type(data).__name__)
            return AIReviewResult(summary=str(data))

        if not isinstance(items, list):
            logger.warning("%s: 'comments' is not a list, ignoring it", self.__class__.__name__)
            items = []
        if not isinstance(summary, str):
            summary = json.dumps(summary)

        comments = []
        for item in items:
            comment = normalize_comment(item)
            if comment is None:
                logger.warning("Dropping malformed review comment: %r", item)
                continue
            comments.append(comment)
        return AIReviewResult(summary=summary, comments=comments)


def _first(item: dict, keys: tuple[str, ...]):
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _parse_line(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        # "42", "L42", "42-45" all mean line 42
        match = re.search(r"\d+", value)
        if match and int(match.group()) > 0:
            return int(match.group())
    return None


def normalize_comment(item) -> ReviewComment | None:
    """Return a ReviewComment, or None when a required field is missing."""
    if not isinstance(item, dict):
        return None
    path = _first(item, _PATH_KEYS)
    line = _parse_line(_first(item, _LINE_KEYS))
    body = _first(item, _BODY_KEYS)
    if not isinstance(path, str) or not path.strip() or line is None:
        return None
    if not isinstance(body, str) or not body.strip():
        return None
    return ReviewComment(path=path.strip().lstrip("/"), line=line, body=body.strip())
