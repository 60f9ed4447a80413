"""Data models for findings and skill reports."""

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    """Finding severity, most urgent first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class Confidence(StrEnum):
    """Model confidence in a finding."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class Location:
    """Position of a finding in a file."""

    path: str
    start_line: int
    end_line: int | None = None


@dataclass(frozen=True)
class SuggestedFix:
    """A fix expressed as a unified diff."""

    description: str
    diff: str


@dataclass(frozen=True)
class Finding:
    """One issue reported by a skill."""

    id: str
    severity: Severity
    title: str
    description: str
    confidence: Confidence | None = None
    location: Location | None = None
    suggested_fix: SuggestedFix | None = None
    elapsed_ms: int | None = None

    @property
    def identity(self) -> tuple[str, str | None, int | None]:
        """Key used to collapse repeated findings."""
        if self.location is None:
            return (self.id, None, None)
        return (self.id, self.location.path, self.location.start_line)

    @property
    def is_fixable(self) -> bool:
        """True when the finding carries a diff and a target path."""
        return bool(
            self.suggested_fix is not None
            and self.suggested_fix.diff
            and self.location is not None
            and self.location.path
        )

    def with_elapsed(self, elapsed_ms: int) -> "Finding":
        """Return a copy stamped with the elapsed time."""
        return replace(self, elapsed_ms=elapsed_ms)


@dataclass(frozen=True)
class UsageStats:
    """Token usage and cost of one or more analysis calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cost_usd: float = 0.0

    def __add__(self, other: "UsageStats") -> "UsageStats":
        return UsageStats(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            cache_creation_input_tokens=(
                self.cache_creation_input_tokens + other.cache_creation_input_tokens
            ),
            cost_usd=self.cost_usd + other.cost_usd,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class SkipReason(StrEnum):
    """Why a file was left out of analysis."""

    PATTERN = "pattern"  # Matched a user-configured pattern
    BUILTIN = "builtin"  # Matched a built-in skip pattern


@dataclass(frozen=True)
class SkippedFile:
    """A changed file that was not analyzed."""

    filename: str
    reason: SkipReason
    pattern: str | None = None


@dataclass(frozen=True)
class SkillReport:
    """Aggregated result of running one skill over a change set."""

    skill: str
    summary: str
    findings: tuple[Finding, ...]
    usage: UsageStats | None = None
    duration_ms: int | None = None
    skipped_files: tuple[SkippedFile, ...] = ()
    failed_hunks: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_findings(self) -> bool:
        return bool(self.findings)
