"""Tests for stale comment reconciliation."""

from __future__ import annotations

import pytest

from ai_review_agent.core.stale_comments import (
    CommentMarker,
    build_analyzed_scope,
    comment_from_body,
    find_stale_comments,
    finding_matches_comment,
    generate_content_hash,
    generate_marker,
    limit_stale_resolutions,
    parse_comment_body,
    parse_marker,
)
from ai_review_agent.models.comment import ExistingComment
from ai_review_agent.models.diff import FileChange
from ai_review_agent.models.finding import Finding, Location, Severity

TITLE = "SQL injection"
DESCRIPTION = "User input is concatenated into the query."


def make_comment(
    line: int = 42, path: str = "src/db.ts", title: str = TITLE, **kwargs
) -> ExistingComment:
    defaults = {
        "id": 1,
        "path": path,
        "line": line,
        "title": title,
        "description": DESCRIPTION,
        "content_hash": generate_content_hash(title, DESCRIPTION),
        "thread_id": "thread-1",
    }
    defaults.update(kwargs)
    return ExistingComment(**defaults)


def make_finding(
    line: int = 42,
    path: str = "src/db.ts",
    title: str = TITLE,
    description: str = DESCRIPTION,
) -> Finding:
    return Finding(
        id="sqli",
        severity=Severity.CRITICAL,
        title=title,
        description=description,
        location=Location(path=path, start_line=line),
    )


@pytest.fixture
def scope():
    return build_analyzed_scope([FileChange("src/db.ts"), FileChange("src/api.ts")])


class TestMarkers:
    """Test hidden comment markers."""

    def test_generate_and_parse(self) -> None:
        """Test a generated marker parses back to its parts."""
        marker = generate_marker("src/db.ts", 42, "0a1b2c3d")
        assert marker == "<!-- ai-review:v1:src/db.ts:42:0a1b2c3d -->"
        assert parse_marker(f"**Title**\n\n{marker}") == CommentMarker("src/db.ts", 42, "0a1b2c3d")

    def test_no_marker(self) -> None:
        """Test human comments carry no marker."""
        assert parse_marker("Looks good to me") is None

    def test_content_hash(self) -> None:
        """Test the hash is short, stable and content sensitive."""
        first = generate_content_hash(TITLE, DESCRIPTION)
        assert len(first) == 8
        assert first == generate_content_hash(TITLE, DESCRIPTION)
        assert first != generate_content_hash(TITLE, DESCRIPTION + " More.")


class TestParseCommentBody:
    """Test title/description extraction from rendered comments."""

    def test_plain_title(self) -> None:
        """Test a bold title followed by a description and separator."""
        body = f"**{TITLE}**\n\n{DESCRIPTION}\n\n---\n_security_"
        assert parse_comment_body(body) == (TITLE, DESCRIPTION)

    def test_emoji_title(self) -> None:
        """Test a leading emoji code is dropped from the title."""
        assert parse_comment_body(f"**:warning: {TITLE}**\n{DESCRIPTION}") == (TITLE, DESCRIPTION)

    def test_no_title(self) -> None:
        """Test bodies without a bold title are not parsed."""
        assert parse_comment_body("plain text") is None

    def test_comment_from_body(self) -> None:
        """Test a posted comment is rebuilt from its body."""
        content_hash = generate_content_hash(TITLE, DESCRIPTION)
        body = (
            f"{generate_marker('src/db.ts', 42, content_hash)}\n"
            f"**:rotating_light: {TITLE}**\n\n{DESCRIPTION}\n\n---\n_Reported by security_"
        )

        comment = comment_from_body(7, body, thread_id="t-7")

        assert comment is not None
        assert (comment.id, comment.path, comment.line) == (7, "src/db.ts", 42)
        assert comment.title == TITLE
        assert comment.description == DESCRIPTION
        assert comment.content_hash == content_hash
        assert comment.thread_id == "t-7"
        assert comment.is_bot

    def test_comment_without_marker_ignored(self) -> None:
        """Test human comments are never considered ours."""
        assert comment_from_body(1, f"**{TITLE}**\n{DESCRIPTION}") is None


class TestFindingMatchesComment:
    """Test matching of findings to earlier comments."""

    def test_within_line_tolerance(self) -> None:
        """Test a finding that moved a few lines still matches."""
        assert finding_matches_comment(make_finding(line=45), make_comment(line=42))

    def test_outside_line_tolerance(self) -> None:
        """Test a finding far away does not match."""
        assert not finding_matches_comment(make_finding(line=50), make_comment(line=42))

    def test_different_path(self) -> None:
        """Test paths must be equal."""
        assert not finding_matches_comment(make_finding(path="src/api.ts"), make_comment())

    def test_title_match_when_description_changed(self) -> None:
        """Test a reworded description still matches by title."""
        finding = make_finding(title="sql injection ", description="Reworded.")
        assert finding_matches_comment(finding, make_comment())

    def test_hash_match_when_comment_title_differs(self) -> None:
        """Test the content hash matches even if the stored title differs."""
        content_hash = generate_content_hash(TITLE, DESCRIPTION)
        comment = make_comment(title="Edited title", content_hash=content_hash)
        assert finding_matches_comment(make_finding(), comment)

    def test_no_match(self) -> None:
        """Test a different issue at the same line does not match."""
        finding = make_finding(title="Missing await", description="x")
        assert not finding_matches_comment(finding, make_comment())

    def test_finding_without_location(self) -> None:
        """Test location-less findings never match."""
        finding = Finding(id="a", severity=Severity.LOW, title=TITLE, description=DESCRIPTION)
        assert not finding_matches_comment(finding, make_comment())


class TestFindStaleComments:
    """Test stale comment detection."""

    def test_still_reported_not_stale(self, scope) -> None:
        """Test a comment whose issue moved three lines is kept."""
        assert find_stale_comments([make_comment(line=42)], [make_finding(line=45)], scope) == []

    def test_moved_too_far_is_stale(self, scope) -> None:
        """Test a comment eight lines away from the finding is stale."""
        comment = make_comment(line=42)
        assert find_stale_comments([comment], [make_finding(line=50)], scope) == [comment]

    def test_fixed_issue_is_stale(self, scope) -> None:
        """Test a comment with no findings at all is stale."""
        comment = make_comment()
        assert find_stale_comments([comment], [], scope) == [comment]

    def test_out_of_scope_is_stale(self, scope) -> None:
        """Test comments on files no longer in the change set are stale."""
        comment = make_comment(path="src/old_name.ts")
        finding = make_finding(path="src/old_name.ts")
        assert find_stale_comments([comment], [finding], scope) == [comment]

    def test_unresolvable_and_resolved_ignored(self, scope) -> None:
        """Test comments without a thread or already resolved are skipped."""
        comments = [make_comment(thread_id=None), make_comment(id=2, is_resolved=True)]
        assert find_stale_comments(comments, [], scope) == []

    def test_mixed(self, scope) -> None:
        """Test only the unmatched comments are returned, in order."""
        kept = make_comment(id=1, line=10, title="Kept")
        gone = make_comment(id=2, line=80, title="Gone")
        findings = [make_finding(line=12, title="Kept")]

        assert find_stale_comments([kept, gone], findings, scope) == [gone]


class TestLimitStaleResolutions:
    """Test the per-run retraction cap."""

    def test_under_limit(self) -> None:
        """Test short lists pass through."""
        stale = [make_comment(id=i) for i in range(3)]
        assert limit_stale_resolutions(stale) == stale

    def test_over_limit(self) -> None:
        """Test the list is truncated to the limit, keeping order."""
        stale = [make_comment(id=i) for i in range(60)]
        limited = limit_stale_resolutions(stale)
        assert len(limited) == 50
        assert limited[0].id == 0

    def test_custom_limit(self) -> None:
        """Test a configured limit."""
        stale = [make_comment(id=i) for i in range(5)]
        assert [c.id for c in limit_stale_resolutions(stale, limit=2)] == [0, 1]
