"""Data models for analysis skills."""

from dataclasses import dataclass, field
from enum import StrEnum


class ToolName(StrEnum):
    """Tools a skill may request from the analysis capability."""

    READ = "Read"
    GREP = "Grep"
    GLOB = "Glob"
    WRITE = "Write"
    EDIT = "Edit"
    BASH = "Bash"
    WEB_FETCH = "WebFetch"
    WEB_SEARCH = "WebSearch"


# Only these tools are ever granted during analysis
READ_ONLY_TOOLS: frozenset[ToolName] = frozenset({ToolName.READ, ToolName.GREP, ToolName.GLOB})


@dataclass(frozen=True)
class ToolPolicy:
    """Allowed/denied tool names declared by a skill."""

    allowed: tuple[ToolName, ...] = (ToolName.READ, ToolName.GREP)
    denied: tuple[ToolName, ...] = ()

    def effective_tools(self) -> tuple[ToolName, ...]:
        """Tools actually granted: allowed, minus denied, read-only only."""
        return tuple(
            tool for tool in self.allowed if tool in READ_ONLY_TOOLS and tool not in self.denied
        )


@dataclass(frozen=True)
class SkillDefinition:
    """A named analysis task."""

    name: str
    description: str
    prompt: str
    tools: ToolPolicy = field(default_factory=ToolPolicy)
    root_dir: str | None = None  # Directory holding scripts/, references/, assets/
