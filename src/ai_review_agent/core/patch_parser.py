"""Parser for unified diff patches.

This module implements the PatchParser class that splits unified diff text
into hunks. It handles:
- Standard `@@ -a,b +c,d @@ section` headers (counts default to 1)
- git metadata lines (diff --git, index, "\\ No newline"), and ---/+++
  file headers once the counts in the hunk header are used up
- Malformed headers, which fail only the hunk they introduce

Text before the first recognized header is ignored. A patch without any
header yields no hunks.
"""

from __future__ import annotations

import re

import structlog

from ai_review_agent.models.diff import FileStatus, Hunk, ParsedDiff
from ai_review_agent.utils.async_helpers import PatchParseError

log = structlog.get_logger()


class PatchParser:
    """Parser for unified diff text.

    Example:
        parser = PatchParser()
        for hunk in parser.parse(patch):
            print(hunk.new_start, hunk.new_count)
    """

    HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
    # Never part of a hunk body
    METADATA_PREFIXES = ("diff --git", "index ", "\\ No newline")
    # File headers; inside a body these are removed "-- ..." or added "++ ..." lines
    FILE_HEADER_PREFIXES = ("--- ", "+++ ")

    def parse_header(self, line: str) -> tuple[int, int, int, int, str | None]:
        """Parse a hunk header line.

        Args:
            line: A line starting with "@@"

        Returns:
            Tuple of (old_start, old_count, new_start, new_count, header)

        Raises:
            PatchParseError: If the line is not a valid hunk header
        """
        match = self.HUNK_HEADER.match(line)
        if not match:
            raise PatchParseError(f"Malformed hunk header: {line[:80]!r}")

        old_start = int(match.group(1))
        old_count = int(match.group(2)) if match.group(2) is not None else 1
        new_start = int(match.group(3))
        new_count = int(match.group(4)) if match.group(4) is not None else 1
        header = match.group(5).strip() or None
        return old_start, old_count, new_start, new_count, header

    def parse(self, patch: str | None) -> list[Hunk]:
        """Parse a patch into hunks.

        Args:
            patch: Unified diff text (may be None or empty)

        Returns:
            Hunks in patch order
        """
        if not patch:
            return []

        lines = patch.split("\n")
        if lines and lines[-1] == "":
            # Terminating newline, not a blank context line
            lines.pop()

        hunks: list[Hunk] = []
        current: tuple[int, int, int, int, str | None] | None = None
        current_header_line = ""
        body: list[str] = []
        skipping = False
        old_left = new_left = 0

        def flush() -> None:
            if current is not None:
                old_start, old_count, new_start, new_count, header = current
                hunks.append(
                    Hunk(
                        old_start=old_start,
                        old_count=old_count,
                        new_start=new_start,
                        new_count=new_count,
                        header=header,
                        content="\n".join([current_header_line, *body]),
                        lines=tuple(body),
                    )
                )

        for raw in lines:
            line = raw.rstrip("\r")

            if line.startswith("@@"):
                flush()
                body = []
                try:
                    current = self.parse_header(line)
                    current_header_line = line
                    skipping = False
                    old_left, new_left = current[1], current[3]
                except PatchParseError as e:
                    log.warning("hunk_header_parse_error", error=str(e))
                    current = None
                    skipping = True
                continue

            if current is None or skipping:
                continue

            if line.startswith(self.METADATA_PREFIXES):
                continue
            exhausted = old_left <= 0 and new_left <= 0
            if exhausted and line.startswith(self.FILE_HEADER_PREFIXES):
                continue

            body.append(line)
            if line.startswith("-"):
                old_left -= 1
            elif line.startswith("+"):
                new_left -= 1
            else:
                old_left -= 1
                new_left -= 1

        flush()
        return hunks


_default_parser = PatchParser()


def parse_patch(patch: str | None) -> list[Hunk]:
    """Parse a unified diff into hunks using the shared parser."""
    return _default_parser.parse(patch)


def parse_file_diff(
    filename: str,
    patch: str | None,
    status: FileStatus = FileStatus.MODIFIED,
) -> ParsedDiff:
    """Parse a file's patch into a structured diff object."""
    return ParsedDiff(
        filename=filename,
        status=status.diff_status,
        hunks=tuple(parse_patch(patch)),
        raw_patch=patch or "",
    )


def count_patch_chunks(patch: str | None) -> int:
    """Count hunk headers in a patch without parsing bodies."""
    if not patch:
        return 0
    return sum(1 for line in patch.split("\n") if line.startswith("@@ "))


def get_hunk_line_range(hunk: Hunk) -> tuple[int, int]:
    """Line range covered by a hunk in the new file (inclusive).

    An empty range (pure deletion) collapses to its start line.
    """
    start = max(1, hunk.new_start)
    return start, max(start, hunk.new_end)


def get_expanded_line_range(hunk: Hunk, context_lines: int = 20) -> tuple[int, int]:
    """Hunk range widened by ``context_lines`` on both sides.

    The start clamps to line 1. The end is not clamped here because the
    file length is unknown; readers clamp it.
    """
    start, end = get_hunk_line_range(hunk)
    return max(1, start - context_lines), end + context_lines


def format_line_range(hunk: Hunk) -> str:
    """Human-readable new-file line range, e.g. "42" or "40-46"."""
    start, end = get_hunk_line_range(hunk)
    return str(start) if start == end else f"{start}-{end}"
