"""Core business logic components.

This module exports the main pipeline pieces:
- SkillRunner: Drives one skill across every hunk of a change set
- ContextExpander: Adds surrounding file lines to hunks
- Patch parsing, output parsing, severity and dedup helpers
- Patch application, duplicate detection and stale-comment reconciliation
"""

from ai_review_agent.core.comment_reconciler import CommentReconciliation, reconcile_comments
from ai_review_agent.core.context_expander import ContextExpander, format_hunk_for_analysis
from ai_review_agent.core.dedup import dedupe_against_comments, deduplicate_findings
from ai_review_agent.core.output_parser import extract_json_object, parse_findings_output
from ai_review_agent.core.patch_applier import (
    FixResult,
    FixSummary,
    apply_all_fixes,
    apply_unified_diff,
    collect_fixable_findings,
)
from ai_review_agent.core.patch_parser import parse_file_diff, parse_patch
from ai_review_agent.core.severity import filter_findings_by_severity, should_fail
from ai_review_agent.core.skill_loader import resolve_skill
from ai_review_agent.core.skill_runner import RunnerOptions, SkillRunner
from ai_review_agent.core.stale_comments import find_stale_comments

__all__ = [
    "CommentReconciliation",
    "ContextExpander",
    "FixResult",
    "FixSummary",
    "RunnerOptions",
    "SkillRunner",
    "apply_all_fixes",
    "apply_unified_diff",
    "collect_fixable_findings",
    "dedupe_against_comments",
    "deduplicate_findings",
    "extract_json_object",
    "filter_findings_by_severity",
    "find_stale_comments",
    "format_hunk_for_analysis",
    "parse_file_diff",
    "parse_findings_output",
    "parse_patch",
    "reconcile_comments",
    "resolve_skill",
    "should_fail",
]
