"""Reconciliation of new findings against previously posted comments.

A comment posted by an earlier run is stale when the current run no longer
reports the issue it describes. Stale comments are retracted by the
posting collaborator; this module only decides which ones.

Comments carry a hidden marker so later runs can recognise them:
``<!-- ai-review:v1:{path}:{line}:{hash} -->``.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import structlog

from ai_review_agent.models.comment import AnalyzedScope, ExistingComment
from ai_review_agent.models.diff import FileChange
from ai_review_agent.models.finding import Finding
from ai_review_agent.utils.logging import LogEventNames

log = structlog.get_logger()

MAX_STALE_RESOLUTIONS = 50
LINE_TOLERANCE = 5

MARKER_PATTERN = re.compile(r"<!-- ai-review:v1:([^:]+):(\d+):([a-f0-9]+) -->")
_TITLE_PATTERN = re.compile(r"\*\*(?::[a-z_]+:\s*)?(.+?)\*\*")


@dataclass(frozen=True)
class CommentMarker:
    """Location and content hash embedded in a posted comment."""

    path: str
    line: int
    content_hash: str


def generate_content_hash(title: str, description: str) -> str:
    """Short content hash used for exact-match comparison."""
    return hashlib.sha256(f"{title}\n{description}".encode()).hexdigest()[:8]


def generate_marker(path: str, line: int, content_hash: str) -> str:
    """Hidden HTML marker to embed in a posted comment body."""
    return f"<!-- ai-review:v1:{path}:{line}:{content_hash} -->"


def parse_marker(body: str) -> CommentMarker | None:
    """Extract the marker from a comment body, if present."""
    match = MARKER_PATTERN.search(body)
    if match is None:
        return None
    path, line, content_hash = match.groups()
    return CommentMarker(path=path, line=int(line), content_hash=content_hash)


def parse_comment_body(body: str) -> tuple[str, str] | None:
    """Split a rendered comment into (title, description).

    The expected shape is ``**Title**`` (optionally ``**:emoji: Title**``)
    followed by the description up to the first ``---`` separator.
    """
    match = _TITLE_PATTERN.search(body)
    if match is None:
        return None

    title = match.group(1).strip()
    separator = body.find("---", match.end())
    description = body[match.end() : separator if separator != -1 else len(body)].strip()
    return title, description


def comment_from_body(
    comment_id: int,
    body: str,
    thread_id: str | None = None,
    is_resolved: bool = False,
) -> ExistingComment | None:
    """Build an ExistingComment from a comment posted by this tool.

    Returns None for comments without a marker or a parseable title.
    """
    marker = parse_marker(body)
    if marker is None:
        return None
    parsed = parse_comment_body(body)
    if parsed is None:
        return None
    title, description = parsed
    return ExistingComment(
        id=comment_id,
        path=marker.path,
        line=marker.line,
        title=title,
        description=description,
        content_hash=marker.content_hash,
        thread_id=thread_id,
        is_resolved=is_resolved,
        is_bot=True,
        body=body,
    )


def build_analyzed_scope(file_changes: Iterable[FileChange]) -> AnalyzedScope:
    return AnalyzedScope.from_file_changes(file_changes)


def is_in_analyzed_scope(comment: ExistingComment, scope: AnalyzedScope) -> bool:
    return comment.path in scope


def _normalize_title(title: str) -> str:
    return title.strip().lower()


def finding_matches_comment(finding: Finding, comment: ExistingComment) -> bool:
    """True when a finding still describes the issue a comment raised."""
    location = finding.location
    if location is None or location.path != comment.path:
        return False
    if abs(location.start_line - comment.line) > LINE_TOLERANCE:
        return False
    if generate_content_hash(finding.title, finding.description) == comment.content_hash:
        return True
    # Descriptions drift between runs; titles are steadier
    return _normalize_title(finding.title) == _normalize_title(comment.title)


def find_stale_comments(
    comments: Sequence[ExistingComment],
    findings: Sequence[Finding],
    scope: AnalyzedScope,
) -> list[ExistingComment]:
    """Comments whose issue is no longer reported.

    Comments without a thread id cannot be resolved and are ignored, as are
    comments a human already resolved. A comment on a file outside the
    analyzed scope (renamed, reverted) is always stale.
    """
    stale: list[ExistingComment] = []
    for comment in comments:
        if not comment.thread_id or comment.is_resolved:
            continue
        if not is_in_analyzed_scope(comment, scope):
            stale.append(comment)
            continue
        if not any(finding_matches_comment(finding, comment) for finding in findings):
            stale.append(comment)

    if stale:
        log.info(LogEventNames.STALE_COMMENTS_FOUND, count=len(stale), total=len(comments))
    return stale


def limit_stale_resolutions(
    stale: Sequence[ExistingComment],
    limit: int = MAX_STALE_RESOLUTIONS,
) -> list[ExistingComment]:
    """Cap the number of retractions per run."""
    if len(stale) > limit:
        log.warning(LogEventNames.STALE_RESOLUTIONS_LIMITED, limit=limit, total=len(stale))
    return list(stale[:limit])
