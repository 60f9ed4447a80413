"""Tests for the unified diff parser."""

from __future__ import annotations

import pytest

from ai_review_agent.core.patch_parser import (
    PatchParser,
    count_patch_chunks,
    format_line_range,
    get_expanded_line_range,
    get_hunk_line_range,
    parse_file_diff,
    parse_patch,
)
from ai_review_agent.models.diff import FileStatus, Hunk, LineKind
from ai_review_agent.utils.async_helpers import PatchParseError

MULTI_HUNK_PATCH = """@@ -1,3 +1,4 @@
 import os
+import sys

 def main():
@@ -10,4 +11,3 @@ def main():
     a = 1
-    b = 2
     c = 3
     return a
@@ -30 +30 @@
-old
+new
"""


def make_hunk(new_start: int, new_count: int) -> Hunk:
    return Hunk(
        old_start=new_start,
        old_count=new_count,
        new_start=new_start,
        new_count=new_count,
        content="",
        lines=(),
    )


class TestParsePatch:
    """Test hunk extraction from patch text."""

    def test_single_hunk(self, sample_patch: str) -> None:
        """Test parsing a git patch with metadata lines."""
        hunks = parse_patch(sample_patch)

        assert len(hunks) == 1
        hunk = hunks[0]
        assert (hunk.old_start, hunk.old_count) == (40, 5)
        assert (hunk.new_start, hunk.new_count) == (40, 7)
        assert hunk.header == "export async function findUser(id: string) {"
        assert len(hunk.lines) == 8
        assert hunk.content.startswith("@@ -40,5 +40,7 @@")

    def test_metadata_lines_not_in_body(self, sample_patch: str) -> None:
        """Test diff --git, index and ---/+++ lines are skipped."""
        hunk = parse_patch(sample_patch)[0]
        assert not any(line.startswith(("diff --git", "index ", "--- ", "+++ ")) for line in hunk.lines)

    def test_removed_line_that_looks_like_file_header(self) -> None:
        """Test a removed "-- comment" line stays in the body."""
        hunk = parse_patch("@@ -1,2 +1,1 @@\n SELECT 1;\n--- old comment\n")[0]

        assert hunk.lines == (" SELECT 1;", "--- old comment")
        assert [(line.kind, line.text) for line in hunk.parsed_lines] == [
            (LineKind.CONTEXT, "SELECT 1;"),
            (LineKind.REMOVED, "-- old comment"),
        ]

    def test_added_line_that_looks_like_file_header(self) -> None:
        """Test an added "++ x" line is counted towards new_count."""
        hunk = parse_patch("@@ -1 +1,2 @@\n a\n+++ x\n")[0]
        assert hunk.lines == (" a", "+++ x")
        assert sum(1 for line in hunk.parsed_lines if line.kind is not LineKind.REMOVED) == hunk.new_count

    def test_file_headers_after_body_skipped(self) -> None:
        """Test ---/+++ headers of a following file are not body lines."""
        patch = "@@ -1 +1 @@\n-a\n+b\ndiff --git a/y b/y\n--- a/y\n+++ b/y\n"
        assert parse_patch(patch)[0].lines == ("-a", "+b")

    def test_multiple_hunks(self) -> None:
        """Test K headers yield K hunks in order."""
        hunks = parse_patch(MULTI_HUNK_PATCH)

        assert [h.new_start for h in hunks] == [1, 11, 30]
        assert hunks[0].header is None
        assert hunks[1].header == "def main():"

    def test_new_count_matches_non_removed_lines(self) -> None:
        """Test every hunk's new_count equals its context plus added lines."""
        for hunk in parse_patch(MULTI_HUNK_PATCH):
            non_removed = sum(1 for line in hunk.parsed_lines if line.kind is not LineKind.REMOVED)
            assert hunk.new_count == non_removed

    def test_missing_counts_default_to_one(self) -> None:
        """Test '@@ -30 +30 @@' means one line on each side."""
        hunk = parse_patch(MULTI_HUNK_PATCH)[2]
        assert hunk.old_count == 1
        assert hunk.new_count == 1

    def test_blank_line_is_context(self) -> None:
        """Test an empty body line is classified as context."""
        hunk = parse_patch(MULTI_HUNK_PATCH)[0]
        kinds = [line.kind for line in hunk.parsed_lines]
        assert kinds == [LineKind.CONTEXT, LineKind.ADDED, LineKind.CONTEXT, LineKind.CONTEXT]
        assert hunk.parsed_lines[2].text == ""

    def test_trailing_newline_not_part_of_body(self) -> None:
        """Test the final newline does not add an empty context line."""
        hunk = parse_patch("@@ -1,1 +1,1 @@\n-a\n+b\n")[0]
        assert hunk.lines == ("-a", "+b")

    def test_text_before_first_header_ignored(self) -> None:
        """Test prose before the first header is dropped."""
        hunks = parse_patch("some preamble\nmore text\n@@ -1 +1 @@\n-a\n+b")
        assert len(hunks) == 1
        assert hunks[0].lines == ("-a", "+b")

    @pytest.mark.parametrize("patch", [None, "", "no headers here\n+just text"])
    def test_no_headers_no_hunks(self, patch: str | None) -> None:
        """Test zero headers yield zero hunks."""
        assert parse_patch(patch) == []

    def test_malformed_header_fails_only_its_hunk(self) -> None:
        """Test a bad header drops its own lines and parsing continues."""
        patch = "@@ -1 +1 @@\n-a\n+b\n@@ broken @@\n+lost\n@@ -9,1 +9,2 @@\n x\n+y\n"
        hunks = parse_patch(patch)

        assert [h.new_start for h in hunks] == [1, 9]
        assert "+lost" not in hunks[0].lines
        assert hunks[1].lines == (" x", "+y")

    def test_crlf_line_endings(self) -> None:
        """Test carriage returns are stripped from body lines."""
        hunk = parse_patch("@@ -1 +1 @@\r\n-a\r\n+b\r\n")[0]
        assert hunk.lines == ("-a", "+b")


class TestParseHeader:
    """Test header parsing on its own."""

    def test_parse_header(self) -> None:
        """Test all header fields are extracted."""
        parser = PatchParser()
        assert parser.parse_header("@@ -5,2 +6,3 @@ class Foo:") == (5, 2, 6, 3, "class Foo:")

    def test_invalid_header_raises(self) -> None:
        """Test an invalid header raises PatchParseError."""
        with pytest.raises(PatchParseError):
            PatchParser().parse_header("@@ -x +y @@")


class TestParseFileDiff:
    """Test ParsedDiff construction."""

    def test_parse_file_diff(self, sample_patch: str) -> None:
        """Test the structured diff keeps filename, status and raw patch."""
        diff = parse_file_diff("src/db.ts", sample_patch, FileStatus.MODIFIED)

        assert diff.filename == "src/db.ts"
        assert diff.status is FileStatus.MODIFIED
        assert len(diff.hunks) == 1
        assert diff.raw_patch == sample_patch

    @pytest.mark.parametrize(
        "status,expected",
        [
            (FileStatus.COPIED, FileStatus.ADDED),
            (FileStatus.CHANGED, FileStatus.MODIFIED),
            (FileStatus.UNCHANGED, FileStatus.MODIFIED),
            (FileStatus.RENAMED, FileStatus.RENAMED),
            (FileStatus.REMOVED, FileStatus.REMOVED),
        ],
    )
    def test_status_mapping(self, status: FileStatus, expected: FileStatus) -> None:
        """Test provider statuses collapse onto the diff statuses."""
        assert parse_file_diff("a.py", None, status).status is expected

    def test_missing_patch(self) -> None:
        """Test a file without a patch has no hunks."""
        diff = parse_file_diff("image.png", None)
        assert diff.hunks == ()
        assert diff.raw_patch == ""


class TestLineRanges:
    """Test line range helpers."""

    def test_count_patch_chunks(self) -> None:
        """Test counting hunk headers."""
        assert count_patch_chunks(MULTI_HUNK_PATCH) == 3
        assert count_patch_chunks(None) == 0

    def test_hunk_line_range(self) -> None:
        """Test the inclusive new-file range."""
        assert get_hunk_line_range(make_hunk(40, 7)) == (40, 46)

    def test_deletion_range_collapses(self) -> None:
        """Test a pure deletion collapses to its start line."""
        assert get_hunk_line_range(make_hunk(12, 0)) == (12, 12)

    def test_deleted_file_range(self) -> None:
        """Test a '+0,0' header is treated as line 1."""
        assert get_hunk_line_range(make_hunk(0, 0)) == (1, 1)

    def test_expanded_range_clamps_start(self) -> None:
        """Test the expanded range never starts before line 1."""
        assert get_expanded_line_range(make_hunk(5, 2), context_lines=20) == (1, 26)
        assert get_expanded_line_range(make_hunk(40, 7), context_lines=10) == (30, 56)

    @pytest.mark.parametrize("start,count,expected", [(42, 1, "42"), (40, 7, "40-46"), (8, 0, "8")])
    def test_format_line_range(self, start: int, count: int, expected: str) -> None:
        """Test single lines and ranges are formatted."""
        assert format_line_range(make_hunk(start, count)) == expected
