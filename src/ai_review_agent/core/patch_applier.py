"""Application of suggested fixes to the working tree.

Fixes arrive as unified diffs. Application is two-phase:
1. Every hunk is verified against an immutable snapshot of the file
2. Hunks are spliced bottom-to-top (old_start descending) so earlier edits
   never shift the offsets of later ones, and the file is written once

A mismatch anywhere leaves the file byte-identical. Applying the same fix
twice fails on the second attempt because the context no longer matches.
"""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

import structlog

from ai_review_agent.core.patch_parser import parse_patch
from ai_review_agent.models.diff import Hunk, LineKind
from ai_review_agent.models.finding import Finding, SkillReport
from ai_review_agent.utils.async_helpers import PatchApplyError
from ai_review_agent.utils.logging import LogEventNames
from ai_review_agent.utils.security import PathOutsideRootError, resolve_within, sanitize_for_terminal

log = structlog.get_logger()

KeyReader = Callable[[str], str]


@dataclass(frozen=True)
class FixResult:
    """Outcome of one fix."""

    finding: Finding
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class FixSummary:
    """Tally of a fix-application run."""

    applied: int = 0
    skipped: int = 0
    failed: int = 0
    results: list[FixResult] = field(default_factory=list)


@dataclass(frozen=True)
class _Edit:
    start: int  # 0-based index into the snapshot
    old: list[str]
    new: list[str]


def _hunk_edit(hunk: Hunk) -> _Edit:
    old: list[str] = []
    new: list[str] = []
    for line in hunk.parsed_lines:
        if line.kind is LineKind.REMOVED:
            old.append(line.text)
        elif line.kind is LineKind.ADDED:
            new.append(line.text)
        else:
            old.append(line.text)
            new.append(line.text)
    # "-N,0" inserts after line N; otherwise old_start is the first old line
    start = hunk.old_start if not old else hunk.old_start - 1
    return _Edit(start=max(0, start), old=old, new=new)


def _verify(lines: Sequence[str], edit: _Edit) -> None:
    for offset, expected in enumerate(edit.old):
        index = edit.start + offset
        if index >= len(lines):
            raise PatchApplyError(f"Hunk context mismatch: line {index + 1} doesn't exist")
        if lines[index] != expected:
            raise PatchApplyError(
                f"Hunk context mismatch at line {index + 1}: "
                f"expected {expected!r}, got {lines[index]!r}"
            )


def _write_atomic(path: Path, content: str) -> None:
    tmp_name: str | None = None
    try:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException as e:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
        if isinstance(e, OSError):
            raise PatchApplyError(f"Cannot write {path}: {e}") from e
        raise


def apply_unified_diff(path: str | Path, diff: str) -> None:
    """Apply a unified diff to a file, all hunks or nothing.

    Args:
        path: File to patch
        diff: Unified diff text with one or more hunks

    Raises:
        PatchApplyError: If the file is missing, the diff has no hunks, hunks
            overlap, any hunk's context does not match, or the write fails
    """
    path = Path(path)
    if not path.is_file():
        raise PatchApplyError(f"File not found: {path}")

    hunks = parse_patch(diff)
    if not hunks:
        raise PatchApplyError("No valid hunks found in diff")

    try:
        with path.open(encoding="utf-8", newline="") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise PatchApplyError(f"Cannot read {path}: {e}") from e

    newline = "\r\n" if "\r\n" in content else "\n"
    snapshot = tuple(content.split(newline))

    edits = sorted((_hunk_edit(h) for h in hunks), key=lambda e: e.start, reverse=True)

    # Phase 1: verify everything against the untouched snapshot
    lower_bound = len(snapshot) + 1
    for edit in edits:
        _verify(snapshot, edit)
        if edit.start + len(edit.old) > lower_bound:
            raise PatchApplyError(f"Overlapping hunks at line {edit.start + 1}")
        lower_bound = edit.start

    # Phase 2: splice bottom-to-top, then write once
    lines = list(snapshot)
    for edit in edits:
        lines[edit.start : edit.start + len(edit.old)] = edit.new

    _write_atomic(path, newline.join(lines))


def collect_fixable_findings(reports: Iterable[SkillReport]) -> list[Finding]:
    """Findings with a fix diff and a location path.

    Sorted by path, then start line descending, so fixes in one file apply
    bottom-to-top.
    """
    fixable = [f for report in reports for f in report.findings if f.is_fixable]
    fixable.sort(key=lambda f: -f.location.start_line)  # type: ignore[union-attr]
    fixable.sort(key=lambda f: f.location.path)  # type: ignore[union-attr]
    return fixable


def _apply_fix(finding: Finding, repo_path: Path) -> FixResult:
    location = finding.location
    fix = finding.suggested_fix
    if location is None or fix is None or not fix.diff:
        return FixResult(finding=finding, success=False, error="Finding has no applicable fix")

    try:
        target = resolve_within(location.path, [repo_path])
        apply_unified_diff(target, fix.diff)
    except (PatchApplyError, PathOutsideRootError) as e:
        log.warning(LogEventNames.FIX_FAILED, finding_id=finding.id, path=location.path, error=str(e))
        return FixResult(finding=finding, success=False, error=str(e))

    log.info(LogEventNames.FIX_APPLIED, finding_id=finding.id, path=location.path)
    return FixResult(finding=finding, success=True)


def apply_all_fixes(findings: Sequence[Finding], repo_path: str | Path = ".") -> FixSummary:
    """Apply every fix independently; one failure never blocks the others."""
    repo_path = Path(repo_path)
    results: list[FixResult] = []
    for finding in findings:
        if not finding.is_fixable:
            continue
        results.append(_apply_fix(finding, repo_path))

    applied = sum(1 for r in results if r.success)
    return FixSummary(applied=applied, skipped=0, failed=len(results) - applied, results=results)


def read_single_key(prompt: str) -> str:
    """Show a prompt on stderr and read one keypress from stdin.

    Falls back to line input when stdin is not a terminal.

    Raises:
        KeyboardInterrupt: On Ctrl+C
    """
    sys.stderr.write(prompt)
    sys.stderr.flush()

    if not sys.stdin.isatty():
        line = sys.stdin.readline()
        key = line.strip()[:1].lower()
    else:
        import termios
        import tty

        fd = sys.stdin.fileno()
        previous = termios.tcgetattr(fd)
        try:
            tty.setraw(fd)
            key = sys.stdin.read(1)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, previous)
        if key == "\x03":
            sys.stderr.write("\n")
            raise KeyboardInterrupt
        key = key.lower()
        sys.stderr.write(key + "\n")
    return key


def _format_diff(diff: str) -> list[str]:
    return [f"  {sanitize_for_terminal(line)}" for line in diff.split("\n")]


def run_interactive_fix_flow(
    findings: Sequence[Finding],
    repo_path: str | Path = ".",
    key_reader: KeyReader | None = None,
    output: TextIO | None = None,
) -> FixSummary:
    """Walk through fixes one at a time.

    The user confirms once, then answers per fix: ``y`` applies, ``n``
    skips, ``q`` skips this fix and every remaining one.

    Args:
        findings: Fixable findings, usually from collect_fixable_findings
        repo_path: Repository root the finding paths are relative to
        key_reader: Prompt-and-read function (defaults to a raw keypress)
        output: Stream for fix details (defaults to stderr)
    """
    read_key = key_reader or read_single_key
    out = output or sys.stderr
    repo_path = Path(repo_path)
    fixable = [f for f in findings if f.is_fixable]
    if not fixable:
        return FixSummary()

    noun = "fix" if len(fixable) == 1 else "fixes"
    if read_key(f"\n{len(fixable)} {noun} available. Apply fixes? [y/N] ") != "y":
        return FixSummary(
            skipped=len(fixable),
            results=[FixResult(finding=f, success=False) for f in fixable],
        )

    results: list[FixResult] = []
    applied = skipped = failed = 0

    for index, finding in enumerate(fixable):
        location = finding.location
        fix = finding.suggested_fix
        if location is None or fix is None:
            continue

        print(f"\nFix for: {sanitize_for_terminal(finding.title)}", file=out)
        print(f"  {location.path}:{location.start_line}", file=out)
        if fix.description:
            print(f"  {sanitize_for_terminal(fix.description)}", file=out)
        print("", file=out)
        print("\n".join(_format_diff(fix.diff)), file=out)
        print("", file=out)

        answer = read_key("Apply this fix? [y/n/q] ")

        if answer == "q":
            remaining = fixable[index:]
            skipped += len(remaining)
            results.extend(FixResult(finding=f, success=False) for f in remaining)
            log.info(LogEventNames.FIX_SKIPPED, remaining=len(remaining))
            break

        if answer != "y":
            skipped += 1
            results.append(FixResult(finding=finding, success=False))
            print("-> Skipped", file=out)
            continue

        result = _apply_fix(finding, repo_path)
        results.append(result)
        if result.success:
            applied += 1
            print(f"Applied fix for: {sanitize_for_terminal(finding.title)}", file=out)
        else:
            failed += 1
            print(f"Failed: {result.error}", file=out)

        print(f"({applied} applied, {skipped} skipped, {failed} failed)", file=out)

    return FixSummary(applied=applied, skipped=skipped, failed=failed, results=results)


def render_fix_summary(summary: FixSummary) -> list[str]:
    """Plain-text summary lines; empty when nothing was attempted."""
    if not (summary.applied or summary.skipped or summary.failed):
        return []

    parts = []
    if summary.applied:
        parts.append(f"{summary.applied} applied")
    if summary.skipped:
        parts.append(f"{summary.skipped} skipped")
    if summary.failed:
        parts.append(f"{summary.failed} failed")

    lines = ["FIXES", "  ".join(parts)]
    for result in summary.results:
        if not result.success and result.error:
            lines.append(f"  x {sanitize_for_terminal(result.finding.title)}: {result.error}")
    return lines
