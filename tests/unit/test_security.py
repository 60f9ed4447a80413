"""Tests for security utilities.

These tests verify that:
1. Known secret formats are redacted from prompt and log text
2. Redaction fails closed (raises instead of passing text through)
3. File access stays inside the allowed roots
4. Unsafe git refs and terminal control sequences are rejected
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ai_review_agent.utils.security import (
    PathOutsideRootError,
    RedactionError,
    SecretRedactor,
    SecurityError,
    resolve_within,
    sanitize_for_terminal,
    validate_git_ref,
)


class TestSecretRedactor:
    """Test secret redaction patterns."""

    def test_known_secrets_redacted(self, known_secrets: list[tuple[str, str]]) -> None:
        """Test every known secret format is redacted."""
        redactor = SecretRedactor()
        for secret, name in known_secrets:
            result = redactor.redact(f"value={secret} end")
            assert secret not in result, f"{name} was not redacted"
            assert "[REDACTED]" in result

    def test_generic_assignment(self) -> None:
        """Test key=value style secrets are redacted."""
        result = SecretRedactor().redact("API_KEY = 'abcdef0123456789abcdef'")
        assert "abcdef0123456789abcdef" not in result

    def test_plain_code_untouched(self) -> None:
        """Test ordinary diff text passes through unchanged."""
        text = 'const sql = "SELECT * FROM users WHERE id = " + id;'
        assert SecretRedactor().redact(text) == text

    def test_empty_text(self) -> None:
        """Test empty input is returned as is."""
        assert SecretRedactor().redact("") == ""

    def test_custom_placeholder(self) -> None:
        """Test a custom placeholder."""
        redactor = SecretRedactor(placeholder="***")
        assert redactor.redact("AKIAFAKEEXAMPLEKEY12") == "***"

    def test_custom_patterns(self) -> None:
        """Test additional patterns are applied."""
        redactor = SecretRedactor(custom_patterns=[(r"CORP-[0-9]{6}", "Corp token")])
        assert redactor.redact("token CORP-123456") == "token [REDACTED]"
        assert redactor.secret_names("CORP-123456") == ["Corp token"]

    def test_invalid_pattern_fails_closed(self) -> None:
        """Test a broken pattern refuses to build a redactor."""
        with pytest.raises(RedactionError, match="Failed to compile"):
            SecretRedactor(custom_patterns=[("(unclosed", "broken")])

    def test_redaction_failure_raises(self) -> None:
        """Test an error during substitution is raised, not swallowed."""
        redactor = SecretRedactor()
        broken = MagicMock()
        broken.sub.side_effect = RuntimeError("boom")
        redactor._patterns = [("broken", broken)]

        with pytest.raises(RedactionError, match="Redaction failed"):
            redactor.redact("some text")

    def test_has_secrets(self, known_secrets: list[tuple[str, str]]) -> None:
        """Test detection without redaction."""
        redactor = SecretRedactor()
        assert redactor.has_secrets(known_secrets[0][0])
        assert not redactor.has_secrets("nothing to see")
        assert not redactor.has_secrets("")

    def test_secret_names(self) -> None:
        """Test names are reported without secret content."""
        names = SecretRedactor().secret_names("key AKIAFAKEEXAMPLEKEY12")
        assert names == ["AWS access key ID"]

    def test_error_hierarchy(self) -> None:
        """Test redaction errors are security errors."""
        assert issubclass(RedactionError, SecurityError)
        assert issubclass(PathOutsideRootError, SecurityError)


class TestResolveWithin:
    """Test path confinement."""

    def test_relative_inside(self, tmp_path: Path) -> None:
        """Test relative paths resolve against the first root."""
        assert resolve_within("src/db.ts", [tmp_path]) == tmp_path.resolve() / "src/db.ts"

    def test_root_itself(self, tmp_path: Path) -> None:
        """Test the root directory is allowed."""
        assert resolve_within(".", [tmp_path]) == tmp_path.resolve()

    def test_parent_escape_rejected(self, tmp_path: Path) -> None:
        """Test '..' cannot leave the root."""
        with pytest.raises(PathOutsideRootError):
            resolve_within("../etc/passwd", [tmp_path])

    def test_absolute_outside_rejected(self, tmp_path: Path) -> None:
        """Test absolute paths elsewhere are rejected."""
        with pytest.raises(PathOutsideRootError):
            resolve_within("/etc/passwd", [tmp_path])

    def test_sibling_prefix_rejected(self, tmp_path: Path) -> None:
        """Test a sibling sharing the root's name prefix is outside."""
        root = tmp_path / "repo"
        root.mkdir()
        with pytest.raises(PathOutsideRootError):
            resolve_within(tmp_path / "repo-other" / "x", [root])

    def test_symlink_escape_rejected(self, tmp_path: Path) -> None:
        """Test symlinks are followed before the check."""
        root = tmp_path / "repo"
        root.mkdir()
        outside = tmp_path / "secret.txt"
        outside.write_text("x")
        (root / "link.txt").symlink_to(outside)

        with pytest.raises(PathOutsideRootError):
            resolve_within("link.txt", [root])

    def test_second_root(self, tmp_path: Path) -> None:
        """Test absolute paths inside any root are allowed."""
        repo = tmp_path / "repo"
        skill_dir = tmp_path / "skills"
        repo.mkdir()
        skill_dir.mkdir()
        target = skill_dir / "ref.md"

        assert resolve_within(target, [repo, skill_dir]) == target.resolve()

    def test_no_roots(self) -> None:
        """Test an empty root list allows nothing."""
        with pytest.raises(PathOutsideRootError, match="No allowed roots"):
            resolve_within("x", [])


class TestValidateGitRef:
    """Test git ref validation."""

    @pytest.mark.parametrize(
        "ref",
        ["main", "origin/main", "feature/add-login", "HEAD~1", "HEAD^", "v1.2.3", "a1b2c3d", "main...HEAD"],
    )
    def test_valid(self, ref: str) -> None:
        """Test common refs and revision expressions pass."""
        assert validate_git_ref(ref)

    @pytest.mark.parametrize(
        "ref",
        ["", "-p", "--output=/tmp/x", "main;ls", "a b", "$(id)", "main`id`", "a\nb"],
    )
    def test_invalid(self, ref: str) -> None:
        """Test option injection and shell metacharacters fail."""
        assert not validate_git_ref(ref)


class TestSanitizeForTerminal:
    """Test terminal output sanitization."""

    def test_strips_ansi(self) -> None:
        """Test color and cursor sequences are removed."""
        assert sanitize_for_terminal("\x1b[31mred\x1b[0m \x1b[2Jclear") == "red clear"

    def test_strips_control_characters(self) -> None:
        """Test bell and backspace are removed."""
        assert sanitize_for_terminal("a\x07b\x08c\x7f") == "abc"

    def test_keeps_whitespace(self) -> None:
        """Test newline, tab and carriage return survive."""
        assert sanitize_for_terminal("a\n\tb\r\n") == "a\n\tb\r\n"

    def test_empty(self) -> None:
        """Test empty input."""
        assert sanitize_for_terminal("") == ""
