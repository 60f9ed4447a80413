"""Reconcile a run's findings with comments posted by earlier runs."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import structlog

from ai_review_agent.core.dedup import DuplicateMatch, dedupe_against_comments
from ai_review_agent.core.stale_comments import (
    MAX_STALE_RESOLUTIONS,
    build_analyzed_scope,
    find_stale_comments,
    limit_stale_resolutions,
)
from ai_review_agent.interfaces.comments import CommentSource
from ai_review_agent.models.comment import ExistingComment
from ai_review_agent.models.diff import FileChange
from ai_review_agent.models.finding import Finding
from ai_review_agent.utils.logging import LogEventNames

log = structlog.get_logger()


@dataclass(frozen=True)
class CommentReconciliation:
    """What to post, what is already posted, and what to retract."""

    new_findings: list[Finding] = field(default_factory=list)
    duplicates: list[DuplicateMatch] = field(default_factory=list)
    stale: list[ExistingComment] = field(default_factory=list)

    def is_duplicate(self, finding: Finding) -> bool:
        return any(match.finding is finding for match in self.duplicates)


async def reconcile_comments(
    source: CommentSource,
    findings: Sequence[Finding],
    file_changes: Iterable[FileChange],
    max_stale: int = MAX_STALE_RESOLUTIONS,
) -> CommentReconciliation:
    """Fetch existing comments and compare them with ``findings``.

    Staleness is judged against every finding of the run, duplicates
    included, since a duplicate still means the issue is present. Only
    comments this tool posted are candidates for retraction.
    """
    comments = await source.fetch_existing_comments()
    log.info(LogEventNames.COMMENTS_FETCHED, count=len(comments))

    new, duplicates = dedupe_against_comments(findings, comments)
    own = [c for c in comments if c.is_bot]
    stale = find_stale_comments(own, findings, build_analyzed_scope(file_changes))
    return CommentReconciliation(
        new_findings=new,
        duplicates=duplicates,
        stale=limit_stale_resolutions(stale, max_stale),
    )
