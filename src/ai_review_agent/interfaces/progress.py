"""Abstract interface for progress reporting."""

from typing import Protocol

from ..models.finding import Finding


class ProgressListener(Protocol):
    """Receives progress events from the skill runner.

    The runner only emits events; rendering is up to the listener. Events
    for one file arrive in order. Events of different files may interleave.
    """

    def on_file_start(self, filename: str, index: int, total: int) -> None:
        """A file's first hunk is about to be analyzed."""
        ...

    def on_hunk_start(self, filename: str, hunk_number: int, total_hunks: int, line_range: str) -> None:
        """A hunk call is about to be issued (hunk_number is 1-based)."""
        ...

    def on_hunk_complete(self, filename: str, hunk_number: int, findings: list[Finding]) -> None:
        """A hunk call finished; ``findings`` is empty on failure."""
        ...

    def on_file_complete(self, filename: str, index: int, total: int) -> None:
        """All hunks of a file were processed (or cancellation stopped it)."""
        ...


class NullProgressListener:
    """Listener that ignores every event."""

    def on_file_start(self, filename: str, index: int, total: int) -> None:
        pass

    def on_hunk_start(self, filename: str, hunk_number: int, total_hunks: int, line_range: str) -> None:
        pass

    def on_hunk_complete(self, filename: str, hunk_number: int, findings: list[Finding]) -> None:
        pass

    def on_file_complete(self, filename: str, index: int, total: int) -> None:
        pass
