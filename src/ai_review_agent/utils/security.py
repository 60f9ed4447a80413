"""Fail-closed guards for everything that crosses a trust boundary.

Diff text and file contents are redacted before they are sent to the
analysis capability or written to logs. Paths the model asks to read are
confined to the repository (and skill) roots. Refs are checked before they
reach git, and model-written text is stripped of terminal control
sequences before it is printed.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ai_review_agent.utils.async_helpers import ReviewAgentError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

log = structlog.get_logger()


class SecurityError(ReviewAgentError):
    """A security guard refused to continue."""


class RedactionError(SecurityError):
    """Secrets could not be reliably removed; the text must not be sent."""


class PathOutsideRootError(SecurityError):
    """A path resolves outside every allowed root."""


# Branch and tag names, SHAs, HEAD~1, origin/main, A...B
GIT_REF_PATTERN = re.compile(r"^[A-Za-z0-9_./~^@{}-]+$")

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
# Everything below 0x20 except tab, newline and carriage return, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class SecretRedactor:
    """Replaces known secret formats in text with a placeholder.

    A pattern that fails to compile or to run raises RedactionError; text
    is never passed through unredacted.

    Usage:
        redactor = SecretRedactor()
        prompt = redactor.redact(hunk_text)
    """

    DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
        # Generic assignments
        (
            r"(?i)(api[_-]?key|secret|token|password|credential)\s*[=:]\s*[\"']?[\w-]{16,}",
            "Generic secret",
        ),
        # GitHub
        (r"ghp_[a-zA-Z0-9]{36}", "GitHub PAT"),
        (r"github_pat_[a-zA-Z0-9_]{22,}", "GitHub fine-grained PAT"),
        (r"gh[ousr]_[a-zA-Z0-9]{36}", "GitHub app token"),
        # Slack
        (r"xox[baprs]-[\w-]+", "Slack token"),
        # OpenAI
        (r"sk-proj-[a-zA-Z0-9]{20,}", "OpenAI project API key"),
        # Anthropic
        (r"sk-ant-[\w-]{40,}", "Anthropic API key"),
        # AWS
        (r"AKIA[0-9A-Z]{16}", "AWS access key ID"),
        (
            r"(?i)aws[_-]?secret[_-]?access[_-]?key\s*[=:]\s*[\"']?[a-zA-Z0-9/+=]{40}",
            "AWS secret access key",
        ),
        # Google Cloud
        (r"AIza[0-9A-Za-z\-_]{35}", "Google API key"),
        (r"ya29\.[0-9A-Za-z\-_]+", "Google OAuth access token"),
        # Stripe
        (r"[sr]k_live_[a-zA-Z0-9]{24,}", "Stripe secret key"),
        # Database connection strings with credentials
        (
            r"(?i)(postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis|amqp)://[^:\s]+:[^@\s]+@[^\s]+",
            "Database connection string",
        ),
        # Private keys
        (r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----", "Private key header"),
        # JWT tokens
        (r"eyJ[a-zA-Z0-9_-]*\.eyJ[a-zA-Z0-9_-]*\.[a-zA-Z0-9_-]*", "JWT token"),
    )

    def __init__(
        self,
        placeholder: str = "[REDACTED]",
        custom_patterns: Sequence[tuple[str, str]] | None = None,
    ) -> None:
        """Compile the default patterns plus ``custom_patterns``.

        Args:
            placeholder: Replacement for every match.
            custom_patterns: Extra ``(regex, name)`` pairs.

        Raises:
            RedactionError: If a pattern does not compile.
        """
        self.placeholder = placeholder
        self._patterns: list[tuple[str, re.Pattern[str]]] = []
        for source, name in (*self.DEFAULT_PATTERNS, *(custom_patterns or ())):
            try:
                self._patterns.append((name, re.compile(source)))
            except re.error as e:
                log.error("secret_pattern_invalid", name=name, error=str(e))
                raise RedactionError(f"Failed to compile secret pattern {name!r}: {e}") from e

    def redact(self, text: str) -> str:
        """Return ``text`` with every match replaced.

        Raises:
            RedactionError: If any pattern fails while running.
        """
        if not text:
            return text
        try:
            for _, pattern in self._patterns:
                text = pattern.sub(self.placeholder, text)
        except Exception as e:
            log.error("redaction_failed", error_type=type(e).__name__)
            raise RedactionError(f"Redaction failed: {e}") from e
        return text

    def has_secrets(self, text: str) -> bool:
        return bool(text) and any(pattern.search(text) for _, pattern in self._patterns)

    def secret_names(self, text: str) -> list[str]:
        """Kinds of secrets present in ``text``, safe to log."""
        if not text:
            return []
        return [name for name, pattern in self._patterns if pattern.search(text)]


def resolve_within(path: str | Path, roots: Iterable[str | Path]) -> Path:
    """Resolve a path and require it to stay inside one of ``roots``.

    Relative paths are resolved against the first root. Symlinks are
    followed before the containment check.

    Args:
        path: Candidate path (relative or absolute)
        roots: Allowed root directories; the first one anchors relative paths

    Returns:
        The resolved absolute path

    Raises:
        PathOutsideRootError: If the path escapes every root
    """
    resolved_roots = [Path(r).resolve() for r in roots]
    if not resolved_roots:
        raise PathOutsideRootError("No allowed roots configured")

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = resolved_roots[0] / os.path.normpath(candidate)
    resolved = candidate.resolve()

    for root in resolved_roots:
        if resolved == root or resolved.is_relative_to(root):
            return resolved

    log.warning("path_rejected", path=str(path))
    raise PathOutsideRootError(f"Path is outside the allowed directories: {path}")


def validate_git_ref(ref: str) -> bool:
    """Validate that a git ref is safe to pass as a command argument.

    Refs may not start with "-" (option injection) and may only contain
    characters used in ref names and revision expressions.
    """
    if not ref or ref.startswith("-"):
        return False
    return bool(GIT_REF_PATTERN.match(ref))


def sanitize_for_terminal(text: str) -> str:
    """Strip ANSI sequences and control characters from model-written text."""
    if not text:
        return text
    return _CONTROL_CHARS.sub("", _ANSI_ESCAPE.sub("", text))
