"""Data models and transfer objects."""

from .analysis import AnalysisRequest, AnalysisResult, AnalysisStatus
from .comment import AnalyzedScope, ExistingComment
from .diff import (
    FileChange,
    FileStatus,
    Hunk,
    HunkLine,
    HunkWithContext,
    LineKind,
    ParsedDiff,
    PreparedFile,
    ReviewContext,
)
from .finding import (
    Confidence,
    Finding,
    Location,
    Severity,
    SkillReport,
    SkippedFile,
    SkipReason,
    SuggestedFix,
    UsageStats,
)
from .skill import READ_ONLY_TOOLS, SkillDefinition, ToolName, ToolPolicy

__all__ = [
    # Analysis models
    "AnalysisRequest",
    "AnalysisResult",
    "AnalysisStatus",
    # Diff models
    "FileChange",
    "FileStatus",
    "Hunk",
    "HunkLine",
    "HunkWithContext",
    "LineKind",
    "ParsedDiff",
    "PreparedFile",
    "ReviewContext",
    # Finding models
    "Confidence",
    "Finding",
    "Location",
    "Severity",
    "SkillReport",
    "SkippedFile",
    "SkipReason",
    "SuggestedFix",
    "UsageStats",
    # Comment models
    "AnalyzedScope",
    "ExistingComment",
    # Skill models
    "READ_ONLY_TOOLS",
    "SkillDefinition",
    "ToolName",
    "ToolPolicy",
]
