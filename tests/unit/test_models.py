"""Tests for data models."""

from __future__ import annotations

import pytest

from ai_review_agent.models.analysis import AnalysisRequest, AnalysisResult, AnalysisStatus
from ai_review_agent.models.comment import AnalyzedScope
from ai_review_agent.models.diff import FileChange, FileStatus, Hunk, HunkLine, HunkWithContext, LineKind
from ai_review_agent.models.finding import (
    Finding,
    Location,
    Severity,
    SkillReport,
    SuggestedFix,
    UsageStats,
)
from ai_review_agent.models.skill import ToolName, ToolPolicy


def make_hunk(new_start: int = 10, new_count: int = 3) -> Hunk:
    return Hunk(
        old_start=new_start,
        old_count=new_count,
        new_start=new_start,
        new_count=new_count,
        content="@@",
        lines=(),
    )


class TestFileStatus:
    """Test status collapsing."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (FileStatus.ADDED, FileStatus.ADDED),
            (FileStatus.REMOVED, FileStatus.REMOVED),
            (FileStatus.RENAMED, FileStatus.RENAMED),
            (FileStatus.COPIED, FileStatus.ADDED),
            (FileStatus.CHANGED, FileStatus.MODIFIED),
            (FileStatus.UNCHANGED, FileStatus.MODIFIED),
        ],
    )
    def test_diff_status(self, status: FileStatus, expected: FileStatus) -> None:
        """Test provider statuses map onto the four diff statuses."""
        assert status.diff_status is expected


class TestHunkLine:
    """Test body line classification."""

    @pytest.mark.parametrize(
        "raw,kind,text",
        [
            ("+added", LineKind.ADDED, "added"),
            ("-removed", LineKind.REMOVED, "removed"),
            (" context", LineKind.CONTEXT, "context"),
            ("", LineKind.CONTEXT, ""),
        ],
    )
    def test_from_raw(self, raw: str, kind: LineKind, text: str) -> None:
        """Test the marker is stripped and the kind recorded."""
        assert HunkLine.from_raw(raw) == HunkLine(kind, text)


class TestHunk:
    """Test hunk helpers."""

    def test_new_end(self) -> None:
        """Test the inclusive end line."""
        assert make_hunk(10, 3).new_end == 12

    def test_parsed_lines(self) -> None:
        """Test body lines are classified."""
        hunk = Hunk(1, 1, 1, 2, "@@ -1 +1,2 @@", (" a", "+b"))
        assert [line.kind for line in hunk.parsed_lines] == [LineKind.CONTEXT, LineKind.ADDED]

    def test_context_after_start_line(self) -> None:
        """Test context after starts right below the hunk."""
        hwc = HunkWithContext("a.py", make_hunk(10, 3), (), (), 7, "python")
        assert hwc.context_after_start_line == 13


class TestFinding:
    """Test finding identity and fixability."""

    def test_identity_with_location(self) -> None:
        """Test identity combines id, path and start line."""
        finding = Finding("sqli", Severity.HIGH, "t", "d", location=Location("a.py", 3, 5))
        assert finding.identity == ("sqli", "a.py", 3)

    def test_identity_without_location(self) -> None:
        """Test location-less findings are keyed by id only."""
        assert Finding("sqli", Severity.HIGH, "t", "d").identity == ("sqli", None, None)

    def test_is_fixable(self) -> None:
        """Test a fix needs a diff and a location."""
        fix = SuggestedFix("use params", "@@ -1 +1 @@\n-a\n+b")
        location = Location("a.py", 1)

        assert Finding("x", Severity.LOW, "t", "d", location=location, suggested_fix=fix).is_fixable
        assert not Finding("x", Severity.LOW, "t", "d", suggested_fix=fix).is_fixable
        assert not Finding(
            "x", Severity.LOW, "t", "d", location=location, suggested_fix=SuggestedFix("d", "")
        ).is_fixable

    def test_with_elapsed(self) -> None:
        """Test elapsed time is stamped on a copy."""
        finding = Finding("x", Severity.LOW, "t", "d")
        stamped = finding.with_elapsed(120)
        assert stamped.elapsed_ms == 120
        assert finding.elapsed_ms is None


class TestUsageStats:
    """Test usage aggregation."""

    def test_add(self) -> None:
        """Test every counter is summed."""
        total = UsageStats(10, 2, 1, 0, 0.5) + UsageStats(5, 3, 0, 4, 0.25)
        assert total == UsageStats(15, 5, 1, 4, 0.75)
        assert total.total_tokens == 20


class TestSkillReport:
    """Test skill report helpers."""

    def test_has_findings(self) -> None:
        """Test has_findings reflects the findings tuple."""
        assert not SkillReport("s", "none", ()).has_findings
        assert SkillReport("s", "one", (Finding("x", Severity.LOW, "t", "d"),)).has_findings


class TestAnalysisRequest:
    """Test request validation."""

    def test_defaults(self) -> None:
        """Test default tools and turn budget."""
        request = AnalysisRequest("sys", "user", ".")
        assert request.allowed_tools == (ToolName.READ, ToolName.GREP)
        assert request.max_turns == 5

    @pytest.mark.parametrize("tool", [ToolName.WRITE, ToolName.EDIT, ToolName.BASH, ToolName.WEB_FETCH])
    def test_write_tools_rejected(self, tool: ToolName) -> None:
        """Test tools with side effects can never be requested."""
        with pytest.raises(ValueError, match="read-only"):
            AnalysisRequest("sys", "user", ".", allowed_tools=(ToolName.READ, tool))

    def test_max_turns_positive(self) -> None:
        """Test a zero turn budget is rejected."""
        with pytest.raises(ValueError, match="max_turns"):
            AnalysisRequest("sys", "user", ".", max_turns=0)


class TestAnalysisResult:
    """Test result status helpers."""

    def test_ok(self) -> None:
        """Test only success is ok."""
        assert AnalysisResult(AnalysisStatus.SUCCESS).ok
        assert not AnalysisResult(AnalysisStatus.ERROR_MAX_TURNS).ok
        assert not AnalysisResult(AnalysisStatus.CANCELLED).ok


class TestToolPolicy:
    """Test effective tool computation."""

    def test_default(self) -> None:
        """Test Read and Grep by default."""
        assert ToolPolicy().effective_tools() == (ToolName.READ, ToolName.GREP)

    def test_denied_removed(self) -> None:
        """Test denied tools are subtracted."""
        policy = ToolPolicy(allowed=(ToolName.READ, ToolName.GREP, ToolName.GLOB), denied=(ToolName.GREP,))
        assert policy.effective_tools() == (ToolName.READ, ToolName.GLOB)

    def test_non_read_only_dropped(self) -> None:
        """Test only read-only tools survive."""
        policy = ToolPolicy(allowed=(ToolName.BASH, ToolName.GLOB, ToolName.WEB_SEARCH))
        assert policy.effective_tools() == (ToolName.GLOB,)


class TestAnalyzedScope:
    """Test scope membership."""

    def test_from_file_changes(self) -> None:
        """Test membership by filename."""
        scope = AnalyzedScope.from_file_changes([FileChange("a.py"), FileChange("b.py")])
        assert "a.py" in scope
        assert "c.py" not in scope
