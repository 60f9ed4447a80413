"""Read-only tools offered to the model during analysis.

Only Read, Grep and Glob exist here. Every path is confined to the
repository root and the skill's resource directory; nothing can write,
execute or reach the network.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

import structlog

from ...models.skill import ToolName
from ...utils.logging import LogEventNames
from ...utils.security import PathOutsideRootError, resolve_within

log = structlog.get_logger()

MAX_READ_LINES = 2000
MAX_LINE_LENGTH = 2000
MAX_MATCHES = 200
MAX_OUTPUT_CHARS = 50000
IGNORED_DIRS = frozenset({".git", "node_modules", ".venv", "venv", "__pycache__", "dist", "build"})

TOOL_DEFINITIONS: dict[ToolName, dict[str, Any]] = {
    ToolName.READ: {
        "name": ToolName.READ.value,
        "description": (
            "Read a text file. Paths are relative to the repository root or absolute "
            "inside the skill directory. Returns numbered lines."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File to read"},
                "offset": {"type": "integer", "description": "1-based first line", "minimum": 1},
                "limit": {"type": "integer", "description": "Number of lines", "minimum": 1},
            },
            "required": ["file_path"],
        },
    },
    ToolName.GREP: {
        "name": ToolName.GREP.value,
        "description": "Search file contents with a regular expression. Returns path:line:text matches.",
        "input_schema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Python regular expression"},
                "path": {"type": "string", "description": "Directory or file to search"},
                "glob": {"type": "string", "description": "Only search files matching this glob"},
            },
            "required": ["pattern"],
        },
    },
    ToolName.GLOB: {
        "name": ToolName.GLOB.value,
        "description": "List files matching a glob pattern such as src/**/*.py.",
        "input_schema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern"},
                "path": {"type": "string", "description": "Directory to search from"},
            },
            "required": ["pattern"],
        },
    },
}


class ToolError(Exception):
    """A tool call could not be completed; reported back to the model."""


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + "\n... (output truncated)"


class ReadOnlyToolbox:
    """Executes read-only tool calls inside a set of allowed roots.

    Example:
        toolbox = ReadOnlyToolbox(["/repo", "/repo/.agents/skills/security"])
        output, is_error = await toolbox.execute("Read", {"file_path": "src/db.ts"})
    """

    def __init__(self, roots: Sequence[str | Path], allowed: Sequence[ToolName] = ()) -> None:
        if not roots:
            raise ValueError("ReadOnlyToolbox requires at least one root")
        self._roots = [Path(r).resolve() for r in roots]
        self._allowed = tuple(t for t in allowed if t in TOOL_DEFINITIONS)

    @property
    def root(self) -> Path:
        return self._roots[0]

    def definitions(self) -> list[dict[str, Any]]:
        """Tool definitions for the Messages API."""
        return [TOOL_DEFINITIONS[tool] for tool in self._allowed]

    def _resolve(self, path: str | None) -> Path:
        try:
            return resolve_within(path or ".", self._roots)
        except PathOutsideRootError as e:
            log.warning(LogEventNames.PATH_REJECTED, path=path)
            raise ToolError(str(e)) from e

    def _display(self, path: Path) -> str:
        for root in self._roots:
            if path.is_relative_to(root):
                rel = path.relative_to(root)
                return str(rel) if root == self.root else str(path)
        return str(path)

    async def execute(self, name: str, arguments: dict[str, Any]) -> tuple[str, bool]:
        """Run a tool call.

        Returns:
            Tuple of (output text, is_error)
        """
        try:
            tool = ToolName(name)
        except ValueError:
            return f"Unknown tool: {name}", True
        if tool not in self._allowed:
            log.warning(LogEventNames.ANALYSIS_TOOL_CALL, tool=name, denied=True)
            return f"Tool not permitted: {name}", True

        log.debug(LogEventNames.ANALYSIS_TOOL_CALL, tool=name, arguments=arguments)
        try:
            if tool is ToolName.READ:
                output = await asyncio.to_thread(self.read, **_pick(arguments, "file_path", "offset", "limit"))
            elif tool is ToolName.GREP:
                output = await asyncio.to_thread(self.grep, **_pick(arguments, "pattern", "path", "glob"))
            else:
                output = await asyncio.to_thread(self.glob, **_pick(arguments, "pattern", "path"))
        except (ToolError, TypeError, ValueError, NotImplementedError) as e:
            return str(e), True
        return _truncate(output), False

    def read(self, file_path: str, offset: int = 1, limit: int = MAX_READ_LINES) -> str:
        """Return numbered lines of a text file."""
        path = self._resolve(file_path)
        if not path.is_file():
            raise ToolError(f"File not found: {file_path}")
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ToolError(f"Cannot read {file_path}: {e}") from e

        lines = content.splitlines()
        start = max(1, _as_int("offset", offset))
        count = min(max(1, _as_int("limit", limit)), MAX_READ_LINES)
        selected = lines[start - 1 : start - 1 + count]
        if not selected:
            return f"(no lines at offset {start}; file has {len(lines)} lines)"
        return "\n".join(
            f"{number:6d}\t{line[:MAX_LINE_LENGTH]}" for number, line in enumerate(selected, start=start)
        )

    def _iter_files(self, base: Path, glob: str | None) -> Iterator[Path]:
        if base.is_file():
            yield base
            return
        if glob is not None:
            _check_glob(glob)
        candidates = base.rglob(glob) if glob else base.rglob("*")
        for candidate in candidates:
            if any(part in IGNORED_DIRS for part in candidate.relative_to(base).parts):
                continue
            if not candidate.is_file():
                continue
            try:
                # Symlinks may point outside the roots
                yield resolve_within(candidate, self._roots)
            except PathOutsideRootError:
                continue

    def grep(self, pattern: str, path: str | None = None, glob: str | None = None) -> str:
        """Search files for a regular expression."""
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise ToolError(f"Invalid regular expression: {e}") from e

        base = self._resolve(path)
        matches: list[str] = []
        for file in self._iter_files(base, glob):
            try:
                text = file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    matches.append(f"{self._display(file)}:{number}:{line[:MAX_LINE_LENGTH]}")
                    if len(matches) >= MAX_MATCHES:
                        matches.append(f"... (stopped after {MAX_MATCHES} matches)")
                        return "\n".join(matches)
        return "\n".join(matches) if matches else "No matches found"

    def glob(self, pattern: str, path: str | None = None) -> str:
        """List files matching a glob pattern."""
        _check_glob(pattern)
        base = self._resolve(path)
        if not base.is_dir():
            raise ToolError(f"Not a directory: {path}")

        results: list[str] = []
        for file in sorted(base.glob(pattern)):
            if any(part in IGNORED_DIRS for part in file.relative_to(base).parts):
                continue
            try:
                resolved = resolve_within(file, self._roots)
            except PathOutsideRootError:
                continue
            results.append(self._display(resolved))
            if len(results) >= MAX_MATCHES:
                results.append(f"... (stopped after {MAX_MATCHES} files)")
                break
        return "\n".join(results) if results else "No files found"


def _pick(arguments: dict[str, Any], *names: str) -> dict[str, Any]:
    """Keep only known arguments; unknown keys from the model are dropped."""
    return {name: arguments[name] for name in names if arguments.get(name) is not None}


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ToolError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ToolError(f"{name} must be an integer, got {value!r}") from None


def _check_glob(pattern: Any) -> None:
    """Reject glob patterns pathlib cannot evaluate relative to a root."""
    if not isinstance(pattern, str) or not pattern:
        raise ToolError("Glob pattern must be a non-empty string")
    if pattern.startswith(("/", "\\", "~")) or Path(pattern).is_absolute():
        raise ToolError(f"Glob pattern must be relative: {pattern}")
