"""Deduplication of findings, within a run and against posted comments."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import structlog

from ai_review_agent.core.stale_comments import generate_content_hash
from ai_review_agent.models.comment import ExistingComment
from ai_review_agent.models.finding import Finding
from ai_review_agent.utils.logging import LogEventNames

log = structlog.get_logger()


def deduplicate_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Collapse findings sharing ``(id, path, start_line)``.

    The first occurrence wins and the relative order of survivors is kept.
    """
    seen: set[tuple[str, str | None, int | None]] = set()
    unique: list[Finding] = []
    for finding in findings:
        key = finding.identity
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique


@dataclass(frozen=True)
class DuplicateMatch:
    """A finding that an existing comment already reports."""

    finding: Finding
    comment: ExistingComment


def _anchor_line(finding: Finding) -> int:
    # Comments are anchored on the last line of the range
    if finding.location is None:
        return 0
    return finding.location.end_line or finding.location.start_line


def _comment_key(path: str, line: int, content_hash: str) -> str:
    return f"{path}:{line}:{content_hash}"


def finding_to_comment(finding: Finding) -> ExistingComment | None:
    """The comment record a finding will produce once posted.

    Lets findings posted earlier in the same run count as existing
    comments. Returns None for findings without a location.
    """
    if finding.location is None:
        return None
    return ExistingComment(
        id=-1,
        path=finding.location.path,
        line=_anchor_line(finding),
        title=finding.title,
        description=finding.description,
        content_hash=generate_content_hash(finding.title, finding.description),
        is_bot=True,
    )


def dedupe_against_comments(
    findings: Sequence[Finding],
    comments: Sequence[ExistingComment],
) -> tuple[list[Finding], list[DuplicateMatch]]:
    """Split findings into new ones and ones already posted.

    A finding duplicates a comment when path, anchor line and content hash
    (title plus description) are all equal. Resolved comments still count,
    so an issue a human dismissed is not posted again.

    Returns:
        Tuple of (new findings, duplicate matches), both in input order
    """
    if not findings or not comments:
        return list(findings), []

    by_key = {_comment_key(c.path, c.line, c.content_hash): c for c in comments}
    new: list[Finding] = []
    duplicates: list[DuplicateMatch] = []
    for finding in findings:
        path = finding.location.path if finding.location is not None else ""
        key = _comment_key(path, _anchor_line(finding), generate_content_hash(finding.title, finding.description))
        comment = by_key.get(key)
        if comment is None:
            new.append(finding)
        else:
            duplicates.append(DuplicateMatch(finding=finding, comment=comment))

    if duplicates:
        log.info(LogEventNames.DUPLICATE_FINDINGS_SKIPPED, count=len(duplicates), total=len(findings))
    return new, duplicates
