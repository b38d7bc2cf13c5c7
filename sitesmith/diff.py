"""Bounded unified diffs for whole-file replacements.

Model edits replace entire files, so a single hunk covering the region between the
common prefix and the common suffix is enough; this is not a general LCS diff.
"""
from pydantic import BaseModel


DIFF_CONTEXT_LINES = 3
MAX_DIFF_LINES = 220
NO_CHANGES_MARKER = "(No changes)"
TRUNCATION_MARKER = "... diff truncated ..."


class DiffResult(BaseModel):
    changed: bool
    additions: int
    deletions: int
    diff: str


def normalize_line_endings(value: str) -> str:
    return value.replace("\r\n", "\n")


def split_lines(text: str) -> list[str]:
    if not text:
        return []
    return text.split("\n")


def trim_diff_lines(lines: list[str], max_lines: int = MAX_DIFF_LINES) -> list[str]:
    if len(lines) <= max_lines:
        return lines
    keep_start = int(max_lines * 0.6)
    keep_end = max_lines - keep_start - 1
    tail_from = max(len(lines) - keep_end, keep_start)
    return [*lines[:keep_start], TRUNCATION_MARKER, *lines[tail_from:]]


def unified_diff(
    path: str,
    before: str,
    after: str,
    context_lines: int = DIFF_CONTEXT_LINES,
    max_lines: int = MAX_DIFF_LINES,
) -> DiffResult:
    before = normalize_line_endings(before)
    after = normalize_line_endings(after)
    if before == after:
        return DiffResult(
            changed=False,
            additions=0,
            deletions=0,
            diff=f"--- a/{path}\n+++ b/{path}\n{NO_CHANGES_MARKER}",
        )

    before_lines = split_lines(before)
    after_lines = split_lines(after)

    start = 0
    while (
        start < len(before_lines)
        and start < len(after_lines)
        and before_lines[start] == after_lines[start]
    ):
        start += 1

    # Suffix scan stops at the prefix so the two never overlap
    before_end = len(before_lines) - 1
    after_end = len(after_lines) - 1
    while (
        before_end >= start
        and after_end >= start
        and before_lines[before_end] == after_lines[after_end]
    ):
        before_end -= 1
        after_end -= 1

    removed = before_lines[start : before_end + 1]
    added = after_lines[start : after_end + 1]

    pre_start = max(0, start - context_lines)
    pre_context = before_lines[pre_start:start]
    post_from = max(before_end + 1, start)
    post_context = before_lines[post_from : post_from + context_lines]

    old_count = len(pre_context) + len(removed) + len(post_context)
    new_count = len(pre_context) + len(added) + len(post_context)

    lines = [
        f"--- a/{path}",
        f"+++ b/{path}",
        f"@@ -{pre_start + 1},{old_count} +{pre_start + 1},{new_count} @@",
        *(f" {line}" for line in pre_context),
        *(f"-{line}" for line in removed),
        *(f"+{line}" for line in added),
        *(f" {line}" for line in post_context),
    ]
    return DiffResult(
        changed=True,
        additions=len(added),
        deletions=len(removed),
        diff="\n".join(trim_diff_lines(lines, max_lines)),
    )


def deleted_file_diff(path: str, before: str, max_lines: int = MAX_DIFF_LINES) -> DiffResult:
    before_lines = split_lines(normalize_line_endings(before))
    lines = [
        f"--- a/{path}",
        "+++ /dev/null",
        f"@@ -1,{len(before_lines)} +0,0 @@",
        *(f"-{line}" for line in before_lines),
    ]
    return DiffResult(
        changed=True,
        additions=0,
        deletions=len(before_lines),
        diff="\n".join(trim_diff_lines(lines, max_lines)),
    )
