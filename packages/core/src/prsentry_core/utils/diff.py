"""Unified-diff helpers shared by the fetcher, the providers and the pipeline."""

from __future__ import annotations

import re

_FILE_HEADER_RE = re.compile(r"^\+\+\+ b/(.+)$")
_TRUNCATION_MARKER = "\n... [truncated]"


def _hunk_start(header: str) -> int | None:
    # "@@ -10,4 +12,6 @@ def foo():" -> 12
    try:
        return int(header.split("+")[1].split(" ")[0].split(",")[0])
    except (IndexError, ValueError):
        return None


def file_diff(filename: str, patch: str, previous_filename: str | None = None) -> str:
    """Wrap a per-file patch (as GitHub returns it) in git diff headers."""
    old = previous_filename or filename
    return f"diff --git a/{old} b/{filename}\n--- a/{old}\n+++ b/{filename}\n{patch.rstrip()}\n"


def count_changed_lines(diff: str) -> int:
    """Number of added or removed lines in a unified diff, headers excluded."""
    count = 0
    for line in diff.splitlines():
        if line.startswith(("+++", "---")):
            continue
        if line.startswith(("+", "-")):
            count += 1
    return count


def commentable_lines(diff: str) -> dict[str, set[int]]:
    """Map each file in the diff to the new-file line numbers visible in it.

    GitHub accepts review comments only on lines that appear in the diff
    (added or context lines on the RIGHT side).
    """
    result: dict[str, set[int]] = {}
    current: set[int] | None = None
    file_line: int | None = None

    for line in diff.splitlines():
        if line.startswith("diff --git"):
            file_line = None
            continue
        header = _FILE_HEADER_RE.match(line)
        if header:
            current = result.setdefault(header.group(1), set())
            file_line = None
            continue
        if line.startswith("@@"):
            file_line = _hunk_start(line)
            continue
        if current is None or file_line is None:
            continue
        if line.startswith("-"):
            continue  # removed line, no new-file number
        if line.startswith("\\"):
            continue  # "\ No newline at end of file"
        current.add(file_line)
        file_line += 1

    return result


def number_diff(diff: str) -> str:
    """Prefix every added and context line with its new-file line number.

    The model is asked to reference these numbers, which keeps its line
    references anchored to lines GitHub will accept.
    """
    out: list[str] = []
    file_line: int | None = None
    for line in diff.splitlines():
        if line.startswith(("diff --git", "--- ", "+++ ")):
            file_line = None
            out.append(line)
            continue
        if line.startswith("@@"):
            file_line = _hunk_start(line)
            out.append(line)
            continue
        if file_line is None or line.startswith(("-", "\\")):
            out.append(f"     {line}")
            continue
        out.append(f"{file_line:>4} {line}")
        file_line += 1
    return "\n".join(out)


def truncate(text: str, limit: int) -> tuple[str, bool]:
    if limit <= 0 or len(text) <= limit:
        return text, False
    return text[:limit] + _TRUNCATION_MARKER, True
