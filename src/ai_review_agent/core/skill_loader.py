"""Loading of analysis skills from SKILL.md files.

A skill file is markdown with YAML frontmatter:

    ---
    name: security-review
    description: Find injection and auth bugs
    allowed-tools: Read Grep Glob
    ---
    Review the change for ...

Skills are looked up by path, or by name in the conventional directories
below the repository root (first directory wins).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
import yaml

from ai_review_agent.models.skill import SkillDefinition, ToolName, ToolPolicy
from ai_review_agent.utils.async_helpers import SkillLoaderError
from ai_review_agent.utils.logging import LogEventNames

log = structlog.get_logger()

SKILL_DIRECTORIES: tuple[str, ...] = (".agents/skills", ".claude/skills")
SKILL_FILENAME = "SKILL.md"

_FRONTMATTER_PATTERN = re.compile(r"\A---\r?\n(.*?)\r?\n---\r?\n?(.*)\Z", re.DOTALL)


@dataclass(frozen=True)
class DiscoveredSkill:
    """A skill found in one of the conventional directories."""

    skill: SkillDefinition
    directory: str
    path: Path


def _parse_frontmatter(content: str, source: Path) -> tuple[dict[str, Any], str]:
    match = _FRONTMATTER_PATTERN.match(content)
    if match is None:
        raise SkillLoaderError(f"Invalid skill file {source}: missing YAML frontmatter")

    raw, body = match.groups()
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise SkillLoaderError(f"Invalid YAML frontmatter in {source}: {e}") from e
    if not isinstance(data, dict):
        raise SkillLoaderError(f"Invalid skill file {source}: frontmatter must be a mapping")
    return data, body


def parse_allowed_tools(value: Any, source: Path | None = None) -> tuple[ToolName, ...] | None:
    """Parse the space-delimited ``allowed-tools`` field.

    Unknown tool names are dropped with a warning. Returns None when the
    field is absent so the default policy applies.
    """
    if value is None:
        return None
    if isinstance(value, list):
        names = [str(v) for v in value]
    else:
        names = str(value).split()

    tools: list[ToolName] = []
    for name in names:
        try:
            tools.append(ToolName(name))
        except ValueError:
            log.warning(
                "invalid_skill_tool_ignored",
                tool=name,
                source=str(source) if source else None,
                valid=[t.value for t in ToolName],
            )
    return tuple(tools)


def load_skill_file(path: str | Path) -> SkillDefinition:
    """Load one skill from a markdown file.

    Raises:
        SkillLoaderError: If the file cannot be read or is not a valid skill.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SkillLoaderError(f"Failed to read skill file: {path}") from e

    data, body = _parse_frontmatter(content, path)

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise SkillLoaderError(f"Invalid skill file {path}: missing 'name' in frontmatter")
    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise SkillLoaderError(f"Invalid skill file {path}: missing 'description' in frontmatter")

    allowed = parse_allowed_tools(data.get("allowed-tools"), path)
    tools = ToolPolicy(allowed=allowed) if allowed is not None else ToolPolicy()

    skill = SkillDefinition(
        name=name.strip(),
        description=description.strip(),
        prompt=body.strip(),
        tools=tools,
        root_dir=str(path.parent.resolve()),
    )
    log.debug(LogEventNames.SKILL_LOADED, skill=skill.name, path=str(path))
    return skill


def load_skills_from_directory(directory: str | Path) -> dict[str, tuple[SkillDefinition, Path]]:
    """Load every skill in a directory.

    ``name/SKILL.md`` entries take priority over flat ``name.md`` files.
    Markdown files without frontmatter (READMEs) are skipped silently;
    malformed skills are skipped with a warning.
    """
    directory = Path(directory)
    skills: dict[str, tuple[SkillDefinition, Path]] = {}
    if not directory.is_dir():
        return skills

    entries = sorted(directory.iterdir())
    nested = [e / SKILL_FILENAME for e in entries if (e / SKILL_FILENAME).is_file()]
    flat = [e for e in entries if e.is_file() and e.suffix == ".md"]

    for path in [*nested, *flat]:
        try:
            skill = load_skill_file(path)
        except SkillLoaderError as e:
            if "missing YAML frontmatter" not in str(e):
                log.warning("skill_load_failed", path=str(path), error=str(e))
            continue
        skills.setdefault(skill.name, (skill, path))
    return skills


def discover_skills(repo_root: str | Path) -> dict[str, DiscoveredSkill]:
    """All skills in the conventional directories, first directory winning."""
    repo_root = Path(repo_root)
    found: dict[str, DiscoveredSkill] = {}
    for directory in SKILL_DIRECTORIES:
        for name, (skill, path) in load_skills_from_directory(repo_root / directory).items():
            if name not in found:
                found[name] = DiscoveredSkill(skill=skill, directory=f"./{directory}", path=path)
    return found


def _looks_like_path(name_or_path: str) -> bool:
    return "/" in name_or_path or "\\" in name_or_path or name_or_path.startswith((".", "~"))


def resolve_skill(name_or_path: str, repo_root: str | Path = ".") -> SkillDefinition:
    """Resolve a skill by path or by name.

    Paths may point at a SKILL.md file, a flat markdown file, or a directory
    holding SKILL.md. Names are looked up as ``<dir>/<name>/SKILL.md`` then
    ``<dir>/<name>.md`` in each conventional directory.

    Raises:
        SkillLoaderError: If no skill is found.
    """
    repo_root = Path(repo_root)

    if _looks_like_path(name_or_path):
        path = Path(name_or_path).expanduser()
        if not path.is_absolute():
            path = repo_root / path
        if path.is_dir():
            path = path / SKILL_FILENAME
        if not path.is_file():
            raise SkillLoaderError(f"Skill not found at path: {name_or_path}")
        return load_skill_file(path)

    for directory in SKILL_DIRECTORIES:
        base = repo_root / directory
        for candidate in (base / name_or_path / SKILL_FILENAME, base / f"{name_or_path}.md"):
            if candidate.is_file():
                return load_skill_file(candidate)

    raise SkillLoaderError(f"Skill not found: {name_or_path}")
