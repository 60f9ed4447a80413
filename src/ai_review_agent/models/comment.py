"""Data models for previously posted review comments."""

from collections.abc import Iterable
from dataclasses import dataclass

from .diff import FileChange


@dataclass(frozen=True)
class ExistingComment:
    """A review annotation posted by an earlier run (or by a human)."""

    id: int
    path: str
    line: int
    title: str
    description: str
    content_hash: str
    thread_id: str | None = None  # Needed to resolve the thread
    is_resolved: bool = False  # Set by a human on the hosting side
    is_bot: bool = False  # Authored by this tool
    body: str | None = None


@dataclass(frozen=True)
class AnalyzedScope:
    """Set of file paths covered by the current run."""

    files: frozenset[str]

    @classmethod
    def from_file_changes(cls, file_changes: Iterable[FileChange]) -> "AnalyzedScope":
        return cls(files=frozenset(f.filename for f in file_changes))

    def __contains__(self, path: object) -> bool:
        return path in self.files
