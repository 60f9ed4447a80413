"""File classification and hunk coalescing.

Decides which changed files are worth analyzing and reduces the number of
analysis calls by merging hunks that sit close together in a file:
- Lock files, minified bundles, build output and generated code are skipped
- User patterns are checked before the built-in ones and may override them
- Nearby hunks are merged while the combined content stays small
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from functools import lru_cache

from ai_review_agent.config.schema import CoalesceConfig, FileMode, FilePattern
from ai_review_agent.models.diff import Hunk

BUILTIN_SKIP_PATTERNS: tuple[str, ...] = (
    # Package manager lock files
    "**/pnpm-lock.yaml",
    "**/package-lock.json",
    "**/yarn.lock",
    "**/Cargo.lock",
    "**/go.sum",
    "**/poetry.lock",
    "**/composer.lock",
    "**/Gemfile.lock",
    "**/Pipfile.lock",
    "**/bun.lockb",
    "**/uv.lock",
    # Minified and bundled code
    "**/*.min.js",
    "**/*.min.css",
    "**/*.bundle.js",
    "**/*.bundle.css",
    # Build artifacts
    "**/dist/**",
    "**/build/**",
    "**/node_modules/**",
    "**/.next/**",
    "**/out/**",
    "**/coverage/**",
    # Generated code
    "**/*.generated.*",
    "**/*.g.ts",
    "**/*.g.dart",
    "**/generated/**",
    "**/__generated__/**",
)

MERGED_HUNK_SEPARATOR = "\n...\n"


@lru_cache(maxsize=256)
def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def match_glob(pattern: str, path: str) -> bool:
    """Match a path against a glob pattern.

    ``**/`` matches zero or more directories, ``**`` anything, ``*`` anything
    except a slash and ``?`` a single non-slash character.
    """
    return _glob_to_regex(pattern).match(path) is not None


def classify_file(
    filename: str,
    user_patterns: Sequence[FilePattern] = (),
) -> tuple[FileMode, str | None]:
    """Classify a file and report the pattern that decided it.

    Args:
        filename: Repo-relative path
        user_patterns: Configured patterns, checked before the built-ins

    Returns:
        Tuple of (mode, matching pattern or None for the default)
    """
    for file_pattern in user_patterns:
        if match_glob(file_pattern.pattern, filename):
            return file_pattern.mode, file_pattern.pattern

    for pattern in BUILTIN_SKIP_PATTERNS:
        if match_glob(pattern, filename):
            return FileMode.SKIP, pattern

    return FileMode.PER_HUNK, None


def should_skip_file(filename: str, user_patterns: Sequence[FilePattern] = ()) -> bool:
    """True when the file would not be analyzed."""
    mode, _ = classify_file(filename, user_patterns)
    return mode == FileMode.SKIP


def merge_hunks(a: Hunk, b: Hunk) -> Hunk:
    """Merge two hunks into one spanning both ranges.

    The first hunk's section header is kept.
    """
    new_start = min(a.new_start, b.new_start)
    new_end = max(a.new_start + a.new_count, b.new_start + b.new_count)
    old_start = min(a.old_start, b.old_start)
    old_end = max(a.old_start + a.old_count, b.old_start + b.old_count)

    return Hunk(
        old_start=old_start,
        old_count=old_end - old_start,
        new_start=new_start,
        new_count=new_end - new_start,
        header=a.header,
        content=a.content + MERGED_HUNK_SEPARATOR + b.content,
        lines=a.lines + b.lines,
    )


def coalesce_hunks(
    hunks: Sequence[Hunk],
    options: CoalesceConfig | None = None,
) -> list[Hunk]:
    """Merge hunks that are close together into larger chunks.

    Hunks are sorted by new start line; a hunk joins the previous chunk when
    the line gap is at most ``max_gap_lines`` and the combined content stays
    within ``max_chunk_size`` characters.
    """
    options = options or CoalesceConfig()
    if len(hunks) <= 1:
        return list(hunks)

    ordered = sorted(hunks, key=lambda h: h.new_start)
    result: list[Hunk] = []
    current = ordered[0]

    for nxt in ordered[1:]:
        gap = nxt.new_start - (current.new_start + current.new_count)
        combined_size = len(current.content) + len(nxt.content)
        if gap <= options.max_gap_lines and combined_size <= options.max_chunk_size:
            current = merge_hunks(current, nxt)
        else:
            result.append(current)
            current = nxt

    result.append(current)
    return result


def merge_all_hunks(hunks: Sequence[Hunk]) -> list[Hunk]:
    """Collapse every hunk of a file into one chunk (whole-file mode)."""
    if len(hunks) <= 1:
        return list(hunks)
    ordered = sorted(hunks, key=lambda h: h.new_start)
    merged = ordered[0]
    for nxt in ordered[1:]:
        merged = merge_hunks(merged, nxt)
    return [merged]
