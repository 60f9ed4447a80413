"""Parsing of free-form analysis output into findings.

Model output is never trusted to be pure JSON. Parsing runs in two stages:
1. A bracket/quote/escape state machine extracts the first balanced
   ``{"findings": [...]}`` object from surrounding prose or code fences
2. Each finding is validated with pydantic; invalid entries are dropped

Both stages report failures as tagged results instead of raising.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ai_review_agent.models.finding import (
    Confidence,
    Finding,
    Location,
    Severity,
    SuggestedFix,
)
from ai_review_agent.utils.async_helpers import ExtractionError

log = structlog.get_logger()

FINDINGS_OBJECT_START = re.compile(r'\{\s*"findings"')
FINDINGS_KEY = '"findings"'


class ExtractionFailure(StrEnum):
    """Why no findings could be extracted."""

    NO_JSON = "no_json"
    UNBALANCED = "unbalanced"
    INVALID_JSON = "invalid_json"
    MISSING_FINDINGS = "missing_findings"
    FINDINGS_NOT_LIST = "findings_not_list"


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of balanced-brace extraction."""

    ok: bool
    json_text: str | None = None
    error: ExtractionFailure | None = None


@dataclass(frozen=True)
class ParsedFindings:
    """Outcome of parsing analysis output into findings."""

    findings: list[Finding] = field(default_factory=list)
    error: ExtractionFailure | None = None
    discarded: int = 0  # Entries that failed schema validation

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """Raise ExtractionError if parsing failed."""
        if self.error is not None:
            raise ExtractionError(f"Could not extract findings: {self.error}", reason=self.error)


def extract_json_object(text: str) -> ExtractionResult:
    """Extract the first balanced JSON object from text.

    Scanning starts at a ``{"findings"`` opening when present, otherwise at
    the first ``{``. Braces inside strings (and escaped quotes) are ignored.
    """
    match = FINDINGS_OBJECT_START.search(text)
    start = match.start() if match else text.find("{")
    if start < 0:
        return ExtractionResult(ok=False, error=ExtractionFailure.NO_JSON)

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return ExtractionResult(ok=True, json_text=text[start : i + 1])

    return ExtractionResult(ok=False, error=ExtractionFailure.UNBALANCED)


class LocationPayload(BaseModel):
    """Wire shape of a finding location."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    path: str
    start_line: int = Field(alias="startLine", gt=0)
    end_line: int | None = Field(default=None, alias="endLine", gt=0)


class SuggestedFixPayload(BaseModel):
    """Wire shape of a suggested fix."""

    model_config = ConfigDict(extra="ignore")

    description: str
    diff: str


class FindingPayload(BaseModel):
    """Wire shape of one finding in analysis output."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    severity: Severity
    confidence: Confidence | None = None
    title: str
    description: str
    location: LocationPayload | None = None
    suggested_fix: SuggestedFixPayload | None = Field(default=None, alias="suggestedFix")

    def to_finding(self) -> Finding:
        location = None
        if self.location is not None:
            location = Location(
                path=self.location.path,
                start_line=self.location.start_line,
                end_line=self.location.end_line,
            )
        fix = None
        if self.suggested_fix is not None:
            fix = SuggestedFix(
                description=self.suggested_fix.description,
                diff=self.suggested_fix.diff,
            )
        return Finding(
            id=self.id,
            severity=self.severity,
            confidence=self.confidence,
            title=self.title,
            description=self.description,
            location=location,
            suggested_fix=fix,
        )


def _with_path(raw: Any, filename: str) -> Any:
    """Overwrite location.path in a raw finding with the known filename."""
    if isinstance(raw, dict) and isinstance(raw.get("location"), dict):
        return {**raw, "location": {**raw["location"], "path": filename}}
    return raw


def validate_findings(items: list[Any], filename: str) -> tuple[list[Finding], int]:
    """Validate raw finding entries, dropping invalid ones.

    Returns:
        Tuple of (valid findings, number discarded)
    """
    findings: list[Finding] = []
    discarded = 0
    for raw in items:
        try:
            payload = FindingPayload.model_validate(_with_path(raw, filename))
        except ValidationError as e:
            discarded += 1
            log.debug("finding_validation_failed", filename=filename, errors=e.error_count())
            continue
        findings.append(payload.to_finding())
    return findings, discarded


def parse_findings_json(json_text: str, filename: str) -> ParsedFindings:
    """Parse an extracted JSON object into findings."""
    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as e:
        log.debug("findings_json_invalid", filename=filename, error=str(e), preview=json_text[:200])
        return ParsedFindings(error=ExtractionFailure.INVALID_JSON)

    if not isinstance(parsed, dict) or "findings" not in parsed:
        return ParsedFindings(error=ExtractionFailure.MISSING_FINDINGS)

    items = parsed["findings"]
    if not isinstance(items, list):
        return ParsedFindings(error=ExtractionFailure.FINDINGS_NOT_LIST)

    findings, discarded = validate_findings(items, filename)
    return ParsedFindings(findings=findings, discarded=discarded)


def parse_findings_output(text: str, filename: str) -> ParsedFindings:
    """Extract and validate findings from analysis output text.

    Args:
        text: Free-form result text from the analysis capability
        filename: File the analyzed hunk belongs to; overrides any path in the text

    Returns:
        ParsedFindings, with ``error`` set when nothing could be extracted
    """
    extraction = extract_json_object(text.strip())
    if not extraction.ok or extraction.json_text is None:
        return ParsedFindings(error=extraction.error)
    return parse_findings_json(extraction.json_text, filename)


def needs_secondary_extraction(text: str, result: ParsedFindings) -> bool:
    """True when output mentions findings but no balanced object was found."""
    return result.error in (ExtractionFailure.NO_JSON, ExtractionFailure.UNBALANCED) and (
        FINDINGS_KEY in text
    )


def secondary_extraction_input(text: str) -> str:
    """Text handed to the reformatting call: everything from the first ``{``."""
    start = text.find("{")
    return text[start:] if start >= 0 else text
