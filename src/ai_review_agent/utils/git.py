"""Safe subprocess wrapper for local git operations.

This module provides a secure wrapper around git that:
- Never uses shell=True
- Validates refs before they reach the command line
- Enforces timeouts on all operations
- Produces FileChange records for a local change set
"""

from __future__ import annotations

import asyncio
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import structlog

from ai_review_agent.core.patch_parser import count_patch_chunks
from ai_review_agent.models.diff import FileChange, FileStatus
from ai_review_agent.utils.async_helpers import ReviewAgentError
from ai_review_agent.utils.logging import LogEventNames
from ai_review_agent.utils.security import validate_git_ref

log = structlog.get_logger()

DEFAULT_BRANCH_CANDIDATES = ("main", "master", "develop")

_STATUS_BY_LETTER = {
    "A": FileStatus.ADDED,
    "D": FileStatus.REMOVED,
    "M": FileStatus.MODIFIED,
    "R": FileStatus.RENAMED,
    "C": FileStatus.COPIED,
}
_DIFF_SPLIT = re.compile(r"^(?=diff --git )", re.MULTILINE)
_DIFF_HEADER = re.compile(r"^diff --git a/(.+?) b/(.+?)$", re.MULTILINE)


class GitError(ReviewAgentError):
    """A git command failed or could not be run."""


class GitTimeoutError(GitError):
    """A git command timed out."""


@dataclass
class CommandResult:
    """Result of a git command execution."""

    stdout: str
    stderr: str
    return_code: int
    command: list[str]

    @property
    def success(self) -> bool:
        """Return True if the command succeeded."""
        return self.return_code == 0


def parse_combined_diff(diff_output: str) -> dict[str, str]:
    """Split ``git diff`` output into per-file patches keyed by new filename."""
    patches: dict[str, str] = {}
    for part in _DIFF_SPLIT.split(diff_output):
        if not part.strip():
            continue
        match = _DIFF_HEADER.match(part)
        if match:
            patches[match.group(2)] = part
    return patches


def _map_status(letter: str) -> FileStatus:
    return _STATUS_BY_LETTER.get(letter[:1], FileStatus.MODIFIED)


class SafeGit:
    """Safe wrapper for git operations in one repository.

    Example:
        git = SafeGit("/path/to/repo")
        files = await git.changed_files("main")
    """

    # Default timeout for commands (seconds)
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        cwd: str | Path = ".",
        git_path: str | None = None,
        default_timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the wrapper.

        Args:
            cwd: Directory to run git in.
            git_path: Path to the git binary. If None, uses PATH.
            default_timeout: Default timeout for commands in seconds.

        Raises:
            GitError: If git is not found.
        """
        resolved_path = git_path or shutil.which("git")
        if not resolved_path:
            raise GitError("git not found in PATH")

        self._git_path: str = resolved_path
        self._cwd = Path(cwd)
        self._default_timeout = default_timeout

    def _validate_ref(self, ref: str) -> None:
        if not validate_git_ref(ref):
            log.warning(LogEventNames.COMMAND_REJECTED, ref=ref)
            raise GitError(f"Invalid git ref: {ref!r}")

    async def _run_command(
        self,
        args: list[str],
        timeout: int | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a git command safely.

        Args:
            args: Command arguments (without the 'git' prefix).
            timeout: Timeout in seconds (uses default if None).
            check: If True, raise GitError on a non-zero exit.

        Raises:
            GitTimeoutError: If the command times out.
            GitError: If check=True and the command fails.
        """
        cmd = [self._git_path, "-c", "core.quotePath=false", *args]
        effective_timeout = timeout or self._default_timeout

        log.debug("executing_git_command", command=cmd, timeout=effective_timeout)

        def run_sync() -> subprocess.CompletedProcess[str]:
            return subprocess.run(
                cmd,
                cwd=self._cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=effective_timeout,
                shell=False,
            )

        try:
            proc = await asyncio.wait_for(
                asyncio.to_thread(run_sync),
                timeout=effective_timeout + 5,
            )
        except (subprocess.TimeoutExpired, TimeoutError) as e:
            log.error("command_timeout", command=cmd, timeout=effective_timeout)
            raise GitTimeoutError(f"git timed out after {effective_timeout}s: {' '.join(args)}") from e
        except OSError as e:
            raise GitError(f"Cannot run git: {e}") from e

        result = CommandResult(
            stdout=proc.stdout,
            stderr=proc.stderr,
            return_code=proc.returncode,
            command=cmd,
        )
        if check and not result.success:
            raise GitError(f"git {' '.join(args)} failed: {result.stderr.strip() or result.stdout.strip()}")
        return result

    async def repo_root(self) -> Path:
        """Top-level directory of the repository."""
        result = await self._run_command(["rev-parse", "--show-toplevel"])
        return Path(result.stdout.strip())

    async def current_branch(self) -> str:
        result = await self._run_command(["rev-parse", "--abbrev-ref", "HEAD"])
        return result.stdout.strip()

    async def ref_exists(self, ref: str) -> bool:
        self._validate_ref(ref)
        result = await self._run_command(["rev-parse", "--verify", "--quiet", ref], check=False)
        return result.success

    async def default_branch(self) -> str:
        """First of main/master/develop that exists locally, else ``main``.

        Only local refs are consulted so no remote prompt is triggered.
        """
        for branch in DEFAULT_BRANCH_CANDIDATES:
            if await self.ref_exists(branch):
                return branch
        return "main"

    def _diff_range(self, base: str, head: str | None) -> list[str]:
        self._validate_ref(base)
        if head is None:
            return [base]
        self._validate_ref(head)
        return [f"{base}...{head}"]

    async def changed_files(self, base: str, head: str | None = None) -> list[FileChange]:
        """Files changed between ``base`` and ``head`` (or the working tree).

        Combines ``--name-status``, ``--numstat`` and the full diff split per
        file into FileChange records with patches and chunk counts.

        Raises:
            GitError: If a ref is invalid or git fails.
        """
        diff_range = self._diff_range(base, head)
        common = ["diff", "--no-color", "--no-ext-diff", *diff_range]

        name_status = await self._run_command([*common[:1], "--name-status", *common[1:]])
        entries: list[tuple[str, FileStatus]] = []
        for line in name_status.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 2 or not parts[0]:
                continue
            # Renames and copies list old and new path
            filename = parts[2] if len(parts) > 2 else parts[1]
            entries.append((filename, _map_status(parts[0])))

        if not entries:
            return []

        counts: dict[str, tuple[int, int]] = {}
        numstat = await self._run_command([*common[:1], "--numstat", *common[1:]])
        for line in numstat.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            additions = 0 if parts[0] == "-" else int(parts[0])
            deletions = 0 if parts[1] == "-" else int(parts[1])
            counts[parts[-1]] = (additions, deletions)

        full_diff = await self._run_command(common)
        patches = parse_combined_diff(full_diff.stdout)

        files: list[FileChange] = []
        for filename, status in entries:
            additions, deletions = counts.get(filename, (0, 0))
            patch = patches.get(filename)
            files.append(
                FileChange(
                    filename=filename,
                    status=status,
                    additions=additions,
                    deletions=deletions,
                    patch=patch,
                    chunks=count_patch_chunks(patch),
                )
            )
        return files
