"""Context expansion: surround a hunk with real lines from the working tree.

The analysis capability judges a change better when it sees the code around
it. This module reads the current file content (best-effort: missing,
unreadable or binary files simply produce no context) and attaches up to N
lines before and after the hunk's new-line range, with absolute line numbers.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from ai_review_agent.core.patch_parser import format_line_range
from ai_review_agent.models.diff import Hunk, HunkWithContext, ParsedDiff
from ai_review_agent.utils.logging import LogEventNames
from ai_review_agent.utils.security import PathOutsideRootError, resolve_within

log = structlog.get_logger()

DEFAULT_CONTEXT_LINES = 20

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "py": "python",
    "pyi": "python",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "cs": "csharp",
    "cpp": "cpp",
    "cc": "cpp",
    "hpp": "cpp",
    "c": "c",
    "h": "c",
    "swift": "swift",
    "php": "php",
    "sh": "bash",
    "bash": "bash",
    "zsh": "bash",
    "yml": "yaml",
    "yaml": "yaml",
    "json": "json",
    "toml": "toml",
    "md": "markdown",
    "sql": "sql",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "less": "less",
}


def detect_language(filename: str) -> str:
    """Detect a fenced-code language tag from a file extension."""
    _, dot, ext = filename.rpartition(".")
    if not dot or not ext or "/" in ext:
        return ""
    ext = ext.lower()
    return LANGUAGE_BY_EXTENSION.get(ext, ext)


class FileLineCache:
    """Cache of file contents split into lines, keyed by absolute path.

    A cached ``None`` records that the file is missing or unreadable so it
    is not retried within the run.
    """

    def __init__(self) -> None:
        self._cache: dict[Path, tuple[str, ...] | None] = {}

    def get_lines(self, path: Path) -> tuple[str, ...] | None:
        """Return the file's lines, or None if it cannot be read as text."""
        if path in self._cache:
            return self._cache[path]

        lines: tuple[str, ...] | None = None
        try:
            data = path.read_bytes()
            if b"\x00" in data:
                log.debug("binary_file_skipped", path=str(path))
            else:
                content = data.decode("utf-8")
                split = content.split("\n")
                if split and split[-1] == "":
                    split.pop()
                lines = tuple(line.rstrip("\r") for line in split)
        except FileNotFoundError:
            log.debug("context_file_not_found", path=str(path))
        except (OSError, UnicodeDecodeError) as e:
            log.debug("context_file_unreadable", path=str(path), error=str(e))

        self._cache[path] = lines
        return lines

    def clear(self) -> None:
        """Forget all cached files."""
        self._cache.clear()


class ContextExpander:
    """Attaches surrounding file lines to hunks.

    Example:
        expander = ContextExpander("/path/to/repo", context_lines=20)
        hunk_ctx = expander.expand("src/db.ts", hunk)
    """

    def __init__(
        self,
        repo_path: str | Path,
        context_lines: int = DEFAULT_CONTEXT_LINES,
        cache: FileLineCache | None = None,
    ) -> None:
        self._repo_path = Path(repo_path)
        self._context_lines = max(0, context_lines)
        self._cache = cache or FileLineCache()

    def _resolve(self, filename: str) -> Path | None:
        """Resolve a repo-relative path, rejecting paths outside the repo."""
        if os.path.isabs(filename):
            log.warning(LogEventNames.PATH_REJECTED, filename=filename)
            return None
        try:
            return resolve_within(filename, [self._repo_path])
        except PathOutsideRootError:
            log.warning(LogEventNames.PATH_REJECTED, filename=filename)
            return None

    def read_lines(self, filename: str, start_line: int, end_line: int) -> tuple[str, ...]:
        """Read lines [start_line, end_line] (1-indexed, inclusive), clamped to the file."""
        if end_line < start_line:
            return ()
        path = self._resolve(filename)
        if path is None:
            return ()
        lines = self._cache.get_lines(path)
        if not lines:
            return ()
        start = max(1, start_line)
        end = min(len(lines), end_line)
        return lines[start - 1 : end]

    def expand(self, filename: str, hunk: Hunk) -> HunkWithContext:
        """Expand one hunk with context from the current file."""
        n = self._context_lines
        new_start = max(1, hunk.new_start)
        before_start = max(1, new_start - n)
        after_start = new_start + hunk.new_count

        context_before = self.read_lines(filename, before_start, new_start - 1)
        context_after = self.read_lines(filename, after_start, after_start + n - 1)

        return HunkWithContext(
            filename=filename,
            hunk=hunk,
            context_before=context_before,
            context_after=context_after,
            context_start_line=before_start,
            language=detect_language(filename),
        )

    def expand_diff(self, diff: ParsedDiff) -> list[HunkWithContext]:
        """Expand every hunk of a parsed diff."""
        return [self.expand(diff.filename, hunk) for hunk in diff.hunks]


def expand_hunk_context(
    repo_path: str | Path,
    filename: str,
    hunk: Hunk,
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> HunkWithContext:
    """Expand a single hunk with surrounding lines from the file on disk."""
    return ContextExpander(repo_path, context_lines).expand(filename, hunk)


def expand_diff_context(
    repo_path: str | Path,
    diff: ParsedDiff,
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> list[HunkWithContext]:
    """Expand all hunks of a parsed diff."""
    return ContextExpander(repo_path, context_lines).expand_diff(diff)


def format_hunk_for_analysis(hunk_ctx: HunkWithContext) -> str:
    """Render a hunk and its context as a prompt section."""
    hunk = hunk_ctx.hunk
    lang = hunk_ctx.language
    lines = [
        f"## File: {hunk_ctx.filename}",
        f"## Language: {lang or 'unknown'}",
        f"## Hunk: lines {format_line_range(hunk)}",
    ]
    if hunk.header:
        lines.append(f"## Scope: {hunk.header}")
    lines.append("")

    if hunk_ctx.context_before:
        before_end = hunk_ctx.context_start_line + len(hunk_ctx.context_before) - 1
        lines.append(f"### Context Before (lines {hunk_ctx.context_start_line}-{before_end})")
        lines.append(f"```{lang}")
        lines.extend(hunk_ctx.context_before)
        lines.append("```")
        lines.append("")

    lines.append("### Changes")
    lines.append("```diff")
    lines.append(hunk.content)
    lines.append("```")

    if hunk_ctx.context_after:
        after_start = hunk_ctx.context_after_start_line
        after_end = after_start + len(hunk_ctx.context_after) - 1
        lines.append("")
        lines.append(f"### Context After (lines {after_start}-{after_end})")
        lines.append(f"```{lang}")
        lines.extend(hunk_ctx.context_after)
        lines.append("```")

    return "\n".join(lines)
