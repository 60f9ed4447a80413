"""Data models for unified diffs and hunks."""

from dataclasses import dataclass, field
from enum import StrEnum


class FileStatus(StrEnum):
    """Coarse status of a changed file."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"
    CHANGED = "changed"
    UNCHANGED = "unchanged"

    @property
    def diff_status(self) -> "FileStatus":
        """Collapse provider-specific statuses onto the four diff statuses."""
        if self is FileStatus.COPIED:
            return FileStatus.ADDED
        if self in (FileStatus.CHANGED, FileStatus.UNCHANGED):
            return FileStatus.MODIFIED
        return self


class LineKind(StrEnum):
    """Classification of a line inside a hunk body."""

    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class HunkLine:
    """A single body line of a hunk."""

    kind: LineKind
    text: str  # Line text without the leading marker

    @classmethod
    def from_raw(cls, raw: str) -> "HunkLine":
        """Classify a raw diff body line."""
        if raw.startswith("+"):
            return cls(LineKind.ADDED, raw[1:])
        if raw.startswith("-"):
            return cls(LineKind.REMOVED, raw[1:])
        # Leading space or a blank line (some tools strip trailing spaces)
        return cls(LineKind.CONTEXT, raw[1:] if raw.startswith(" ") else raw)


@dataclass(frozen=True)
class FileChange:
    """A file touched by a change set."""

    filename: str
    status: FileStatus = FileStatus.MODIFIED
    additions: int = 0
    deletions: int = 0
    patch: str | None = None
    chunks: int | None = None


@dataclass(frozen=True)
class Hunk:
    """A contiguous block of changes from a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    content: str  # Raw hunk including the @@ header
    lines: tuple[str, ...]  # Raw body lines, markers included
    header: str | None = None  # Section heading after the closing @@

    @property
    def parsed_lines(self) -> tuple[HunkLine, ...]:
        """Body lines classified as context/added/removed."""
        return tuple(HunkLine.from_raw(line) for line in self.lines)

    @property
    def new_end(self) -> int:
        """Last line of the hunk in the new file (inclusive)."""
        return self.new_start + self.new_count - 1


@dataclass(frozen=True)
class ParsedDiff:
    """A file's patch split into hunks."""

    filename: str
    status: FileStatus
    hunks: tuple[Hunk, ...]
    raw_patch: str


@dataclass(frozen=True)
class HunkWithContext:
    """A hunk plus real file lines surrounding its new-line range."""

    filename: str
    hunk: Hunk
    context_before: tuple[str, ...]
    context_after: tuple[str, ...]
    context_start_line: int  # Absolute line number of context_before[0]
    language: str

    @property
    def context_after_start_line(self) -> int:
        """Absolute line number of context_after[0]."""
        return max(1, self.hunk.new_start) + self.hunk.new_count


@dataclass(frozen=True)
class PreparedFile:
    """A file ready for analysis, with its hunks in order."""

    filename: str
    hunks: tuple[HunkWithContext, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ReviewContext:
    """Everything the orchestrator needs to know about a change set."""

    repo_path: str
    files: tuple[FileChange, ...] | None  # None when no diff is available at all
    title: str = ""
    base: str | None = None
    head: str | None = None
