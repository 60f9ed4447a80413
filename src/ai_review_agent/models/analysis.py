"""Request/response models for the analysis capability."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from .finding import UsageStats
from .skill import READ_ONLY_TOOLS, ToolName

if TYPE_CHECKING:
    from ..utils.async_helpers import CancellationToken


class AnalysisStatus(StrEnum):
    """Terminal status of one analysis call."""

    SUCCESS = "success"
    ERROR_MAX_TURNS = "error_max_turns"
    ERROR_DURING_EXECUTION = "error_during_execution"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AnalysisRequest:
    """One bounded call to the analysis capability."""

    system_prompt: str
    user_prompt: str
    cwd: str
    allowed_tools: tuple[ToolName, ...] = (ToolName.READ, ToolName.GREP)
    max_turns: int = 5
    model: str | None = None
    extra_roots: tuple[str, ...] = ()  # Readable directories besides cwd
    token: CancellationToken | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        unsafe = [t for t in self.allowed_tools if t not in READ_ONLY_TOOLS]
        if unsafe:
            raise ValueError(f"Only read-only tools may be granted, got: {unsafe}")
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")


@dataclass(frozen=True)
class AnalysisResult:
    """Terminal result of an analysis call."""

    status: AnalysisStatus
    text: str = ""
    usage: UsageStats = field(default_factory=UsageStats)
    turns: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is AnalysisStatus.SUCCESS
