"""Skill execution orchestrator.

This module implements the SkillRunner class that drives one skill across
every prepared hunk of a change set:
1. Parse each file's patch, classify the file, coalesce nearby hunks
2. Expand each hunk with surrounding file lines
3. Analyze files in bounded batches; hunks within a file run in order
4. Parse findings out of each free-form result (with an optional
   secondary extraction call when the output is malformed)
5. Deduplicate findings, sum usage, and build the SkillReport

A failing hunk never fails the file or the run: it yields zero findings and
is counted in ``SkillReport.failed_hunks``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from ai_review_agent.config.schema import ChunkingConfig, FileMode, ReviewConfig
from ai_review_agent.core.chunking import classify_file, coalesce_hunks, merge_all_hunks
from ai_review_agent.core.context_expander import (
    DEFAULT_CONTEXT_LINES,
    ContextExpander,
    format_hunk_for_analysis,
)
from ai_review_agent.core.dedup import deduplicate_findings
from ai_review_agent.core.output_parser import (
    needs_secondary_extraction,
    parse_findings_output,
    secondary_extraction_input,
)
from ai_review_agent.core.patch_parser import format_line_range, parse_file_diff
from ai_review_agent.core.severity import count_by_severity
from ai_review_agent.interfaces.progress import NullProgressListener
from ai_review_agent.models.analysis import AnalysisRequest, AnalysisResult, AnalysisStatus
from ai_review_agent.models.diff import HunkWithContext, PreparedFile, ReviewContext
from ai_review_agent.models.finding import (
    Finding,
    SkillReport,
    SkippedFile,
    SkipReason,
    UsageStats,
)
from ai_review_agent.utils.async_helpers import (
    AnalysisCallError,
    CancellationToken,
    ExtractionError,
    SkillRunnerError,
    process_in_batches,
)
from ai_review_agent.utils.logging import LogEventNames, log_context
from ai_review_agent.utils.security import SecurityError

if TYPE_CHECKING:
    from ai_review_agent.interfaces.analysis import AnalysisProvider
    from ai_review_agent.interfaces.progress import ProgressListener
    from ai_review_agent.models.skill import SkillDefinition

log = structlog.get_logger()

DEFAULT_FILE_CONCURRENCY = 5
DEFAULT_MAX_TURNS = 5

NO_CHANGES_SUMMARY = "No code changes to analyze"

FINDINGS_SCHEMA_PROMPT = """Return ONLY a JSON object (no markdown fences, no explanation):

{
  "findings": [
    {
      "id": "unique-identifier",
      "severity": "critical|high|medium|low|info",
      "confidence": "high|medium|low",
      "title": "Short descriptive title",
      "description": "Detailed explanation of the issue",
      "location": {
        "path": "path/to/file.ts",
        "startLine": 10,
        "endLine": 15
      },
      "suggestedFix": {
        "description": "How to fix this issue",
        "diff": "unified diff format"
      }
    }
  ]
}

Requirements:
- Return ONLY valid JSON
- "findings" array can be empty if no issues found
- "location" is required - use the file path and line numbers from the context provided
- "suggestedFix" is optional
- Be concise - focus only on the changes shown"""


@dataclass(frozen=True)
class RunnerOptions:
    """Tunables for a skill run."""

    model: str | None = None
    max_turns: int = DEFAULT_MAX_TURNS
    context_lines: int = DEFAULT_CONTEXT_LINES
    parallel: bool = True
    file_concurrency: int = DEFAULT_FILE_CONCURRENCY
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    secondary_extraction: bool = True

    @classmethod
    def from_config(cls, config: ReviewConfig) -> RunnerOptions:
        return cls(
            model=config.anthropic.model,
            max_turns=config.runner.max_turns,
            context_lines=config.runner.context_lines,
            parallel=config.runner.parallel,
            file_concurrency=config.runner.file_concurrency,
            chunking=config.chunking,
            secondary_extraction=config.runner.secondary_extraction,
        )


@dataclass(frozen=True)
class PreparationResult:
    """Files ready for analysis plus the files left out."""

    files: list[PreparedFile]
    skipped: list[SkippedFile]


@dataclass(frozen=True)
class HunkAnalysisResult:
    """Findings and usage of one hunk call."""

    findings: list[Finding]
    usage: UsageStats
    failed: bool = False


@dataclass(frozen=True)
class FileAnalysisResult:
    """Findings and usage of all hunks of one file."""

    filename: str
    findings: list[Finding]
    usage: UsageStats
    failed_hunks: int = 0


def build_system_prompt(skill: SkillDefinition) -> str:
    """Builds the system prompt for hunk-based analysis."""
    prompt = (
        "You are a code review agent. You analyze code changes and report findings "
        "in a structured JSON format.\n\n"
        f"## Your Analysis Task\n\n{skill.prompt}\n\n"
        f"## Output Format\n\n{FINDINGS_SCHEMA_PROMPT}"
    )
    if skill.root_dir:
        prompt += (
            "\n\n## Skill Resources\n\n"
            f"This skill is located at: {skill.root_dir}\n"
            "You can read files from scripts/, references/, or assets/ subdirectories "
            "using the Read tool with the full path."
        )
    return prompt


def build_user_prompt(hunk_ctx: HunkWithContext) -> str:
    """Builds the user prompt for a single hunk."""
    return (
        "Analyze this code change for issues:\n\n"
        f"{format_hunk_for_analysis(hunk_ctx)}\n\n"
        "Focus only on the changes shown. Report any issues found, or return an "
        "empty findings array if the code looks good."
    )


def generate_summary(skill_name: str, findings: Sequence[Finding]) -> str:
    """Human summary, e.g. ``"security: Found 2 issues (1 critical, 1 low)"``."""
    if not findings:
        return f"{skill_name}: No issues found"

    parts = [f"{count} {severity}" for severity, count in count_by_severity(findings).items()]
    noun = "issue" if len(findings) == 1 else "issues"
    return f"{skill_name}: Found {len(findings)} {noun} ({', '.join(parts)})"


def aggregate_usage(usages: Sequence[UsageStats]) -> UsageStats:
    """Sum usage stats; an empty sequence yields zeros."""
    return sum(usages, UsageStats())


def prepare_files(context: ReviewContext, options: RunnerOptions | None = None) -> PreparationResult:
    """Turn a change set into files of context-expanded hunks.

    Files without a patch are ignored. Skipped files are reported with the
    pattern that excluded them. File order follows the change set.

    Args:
        context: Change set; ``context.files`` must not be None
        options: Context size and chunking configuration

    Returns:
        PreparationResult with prepared and skipped files
    """
    options = options or RunnerOptions()
    if context.files is None:
        return PreparationResult(files=[], skipped=[])

    expander = ContextExpander(context.repo_path, options.context_lines)
    user_patterns = options.chunking.file_patterns
    user_pattern_names = {p.pattern for p in user_patterns}

    prepared: dict[str, list[HunkWithContext]] = {}
    skipped: list[SkippedFile] = []

    for change in context.files:
        if not change.patch:
            continue

        mode, pattern = classify_file(change.filename, user_patterns)
        if mode == FileMode.SKIP:
            reason = SkipReason.PATTERN if pattern in user_pattern_names else SkipReason.BUILTIN
            skipped.append(SkippedFile(filename=change.filename, reason=reason, pattern=pattern))
            log.debug("file_skipped", filename=change.filename, reason=reason, pattern=pattern)
            continue

        diff = parse_file_diff(change.filename, change.patch, change.status)
        hunks = list(diff.hunks)
        if mode == FileMode.WHOLE_FILE:
            hunks = merge_all_hunks(hunks)
        elif options.chunking.coalesce.enabled:
            hunks = coalesce_hunks(hunks, options.chunking.coalesce)

        for hunk in hunks:
            prepared.setdefault(change.filename, []).append(expander.expand(change.filename, hunk))

    files = [PreparedFile(filename=name, hunks=tuple(hunks)) for name, hunks in prepared.items()]
    return PreparationResult(files=files, skipped=skipped)


class SkillRunner:
    """Runs one skill over a change set.

    Responsibilities:
    - Schedule files in bounded batches, hunks sequentially per file
    - Issue one read-only analysis call per hunk
    - Recover every per-hunk failure into a failed-hunk count
    - Stop scheduling new work once the cancellation token fires
    - Emit progress events

    Example:
        runner = SkillRunner(provider, RunnerOptions(file_concurrency=5))
        report = await runner.run(skill, context, token)
    """

    def __init__(
        self,
        provider: AnalysisProvider,
        options: RunnerOptions | None = None,
        listener: ProgressListener | None = None,
    ) -> None:
        """Initialize the SkillRunner.

        Args:
            provider: Analysis capability used for every hunk
            options: Runner options (defaults apply when omitted)
            listener: Progress sink; events are dropped when omitted
        """
        self._provider = provider
        self._options = options or RunnerOptions()
        self._listener: ProgressListener = listener or NullProgressListener()

    @property
    def options(self) -> RunnerOptions:
        return self._options

    def _build_request(
        self,
        skill: SkillDefinition,
        hunk_ctx: HunkWithContext,
        repo_path: str,
        token: CancellationToken | None,
    ) -> AnalysisRequest:
        return AnalysisRequest(
            system_prompt=build_system_prompt(skill),
            user_prompt=build_user_prompt(hunk_ctx),
            cwd=repo_path,
            allowed_tools=skill.tools.effective_tools(),
            max_turns=self._options.max_turns,
            model=self._options.model,
            extra_roots=(skill.root_dir,) if skill.root_dir else (),
            token=token,
        )

    async def _extract_findings(
        self,
        result: AnalysisResult,
        filename: str,
        request: AnalysisRequest,
    ) -> tuple[list[Finding], UsageStats]:
        """Parse findings from a successful result.

        Raises:
            ExtractionError: If no findings object could be recovered
        """
        parsed = parse_findings_output(result.text, filename)
        if parsed.ok:
            if parsed.discarded:
                log.warning(
                    LogEventNames.FINDINGS_DISCARDED,
                    filename=filename,
                    discarded=parsed.discarded,
                )
            return parsed.findings, UsageStats()

        if not (self._options.secondary_extraction and needs_secondary_extraction(result.text, parsed)):
            parsed.raise_for_error()

        log.info(LogEventNames.SECONDARY_EXTRACTION_STARTED, filename=filename, reason=parsed.error)
        try:
            retry = await self._provider.extract_findings(
                secondary_extraction_input(result.text), request
            )
        except Exception as e:
            log.warning(
                LogEventNames.SECONDARY_EXTRACTION_FAILED,
                filename=filename,
                error=str(e),
                error_type=type(e).__name__,
            )
            return [], UsageStats()

        if not retry.ok:
            log.warning(
                LogEventNames.SECONDARY_EXTRACTION_FAILED,
                filename=filename,
                status=retry.status,
            )
            return [], retry.usage

        reparsed = parse_findings_output(retry.text, filename)
        if not reparsed.ok:
            log.warning(
                LogEventNames.SECONDARY_EXTRACTION_FAILED,
                filename=filename,
                reason=reparsed.error,
            )
        return reparsed.findings, retry.usage

    async def analyze_hunk(
        self,
        skill: SkillDefinition,
        hunk_ctx: HunkWithContext,
        repo_path: str,
        token: CancellationToken | None = None,
    ) -> HunkAnalysisResult:
        """Analyze a single hunk; never raises for per-hunk failures."""
        request = self._build_request(skill, hunk_ctx, repo_path, token)
        line_range = format_line_range(hunk_ctx.hunk)

        try:
            result = await self._provider.analyze(request)
        except asyncio.CancelledError:
            if token is not None and token.is_cancelled:
                log.info(LogEventNames.HUNK_ANALYSIS_CANCELLED, filename=hunk_ctx.filename, lines=line_range)
                return HunkAnalysisResult(findings=[], usage=UsageStats())
            raise
        except (AnalysisCallError, SecurityError) as e:
            log.warning(
                LogEventNames.HUNK_ANALYSIS_FAILED,
                filename=hunk_ctx.filename,
                lines=line_range,
                error=str(e),
                error_type=type(e).__name__,
            )
            return HunkAnalysisResult(findings=[], usage=UsageStats(), failed=True)
        except Exception as e:
            # Provider bugs and unexpected input stay scoped to this hunk
            log.exception(
                LogEventNames.HUNK_ANALYSIS_FAILED,
                filename=hunk_ctx.filename,
                lines=line_range,
                error=str(e),
                error_type=type(e).__name__,
            )
            return HunkAnalysisResult(findings=[], usage=UsageStats(), failed=True)

        if result.status is AnalysisStatus.CANCELLED:
            log.info(LogEventNames.HUNK_ANALYSIS_CANCELLED, filename=hunk_ctx.filename, lines=line_range)
            return HunkAnalysisResult(findings=[], usage=result.usage)

        if not result.ok:
            log.warning(
                LogEventNames.HUNK_ANALYSIS_FAILED,
                filename=hunk_ctx.filename,
                lines=line_range,
                status=result.status,
                error=result.error,
            )
            return HunkAnalysisResult(findings=[], usage=result.usage, failed=True)

        try:
            findings, extra_usage = await self._extract_findings(result, hunk_ctx.filename, request)
        except ExtractionError as e:
            log.warning(
                LogEventNames.HUNK_OUTPUT_UNPARSEABLE,
                filename=hunk_ctx.filename,
                lines=line_range,
                reason=e.reason,
                preview=result.text[:200],
            )
            return HunkAnalysisResult(findings=[], usage=result.usage, failed=True)

        return HunkAnalysisResult(findings=findings, usage=result.usage + extra_usage)

    async def analyze_file(
        self,
        skill: SkillDefinition,
        file: PreparedFile,
        repo_path: str,
        token: CancellationToken | None = None,
        started_at: float | None = None,
    ) -> FileAnalysisResult:
        """Analyze a prepared file's hunks strictly in order.

        Args:
            skill: Skill to run
            file: File with its context-expanded hunks
            repo_path: Repository root handed to the provider as cwd
            token: Cancellation token, checked before each hunk
            started_at: ``time.monotonic()`` of the skill start, for elapsed stamps
        """
        started_at = time.monotonic() if started_at is None else started_at
        findings: list[Finding] = []
        usages: list[UsageStats] = []
        failed = 0
        total = len(file.hunks)

        for number, hunk_ctx in enumerate(file.hunks, start=1):
            if token is not None and token.is_cancelled:
                break

            self._listener.on_hunk_start(file.filename, number, total, format_line_range(hunk_ctx.hunk))
            result = await self.analyze_hunk(skill, hunk_ctx, repo_path, token)

            elapsed_ms = int((time.monotonic() - started_at) * 1000)
            stamped = [f.with_elapsed(elapsed_ms) for f in result.findings]
            self._listener.on_hunk_complete(file.filename, number, stamped)

            findings.extend(stamped)
            usages.append(result.usage)
            failed += int(result.failed)

        return FileAnalysisResult(
            filename=file.filename,
            findings=findings,
            usage=aggregate_usage(usages),
            failed_hunks=failed,
        )

    async def run(
        self,
        skill: SkillDefinition,
        context: ReviewContext,
        token: CancellationToken | None = None,
    ) -> SkillReport:
        """Run a skill over every prepared file of a change set.

        Args:
            skill: Resolved skill definition
            context: Change set with repository path and file changes
            token: Cancellation token; a partial report is returned once it fires

        Returns:
            SkillReport with deduplicated findings and summed usage

        Raises:
            SkillRunnerError: If the context carries no change set at all
        """
        started_at = time.monotonic()
        if context.files is None:
            raise SkillRunnerError("Change set required for skill execution")

        preparation = prepare_files(context, self._options)
        files = preparation.files

        if not files:
            log.info(LogEventNames.SKILL_RUN_EMPTY, skill=skill.name, skipped=len(preparation.skipped))
            return SkillReport(
                skill=skill.name,
                summary=NO_CHANGES_SUMMARY,
                findings=(),
                usage=UsageStats(),
                duration_ms=int((time.monotonic() - started_at) * 1000),
                skipped_files=tuple(preparation.skipped),
            )

        total_files = len(files)
        log.info(
            LogEventNames.SKILL_RUN_STARTED,
            skill=skill.name,
            files=total_files,
            hunks=sum(len(f.hunks) for f in files),
            skipped=len(preparation.skipped),
        )

        async def process_file(file: PreparedFile, index: int) -> FileAnalysisResult:
            self._listener.on_file_start(file.filename, index, total_files)
            with log_context(file=file.filename):
                result = await self.analyze_file(skill, file, context.repo_path, token, started_at)
            self._listener.on_file_complete(file.filename, index, total_files)
            return result

        batch_size = self._options.file_concurrency if self._options.parallel else 1
        results = await process_in_batches(files, process_file, batch_size, token)

        findings = deduplicate_findings(f for result in results for f in result.findings)
        usage = aggregate_usage([r.usage for r in results])
        failed_hunks = sum(r.failed_hunks for r in results)
        duration_ms = int((time.monotonic() - started_at) * 1000)
        cancelled = token is not None and token.is_cancelled

        log.info(
            LogEventNames.SKILL_RUN_COMPLETE,
            skill=skill.name,
            findings=len(findings),
            failed_hunks=failed_hunks,
            files_processed=len(results),
            cancelled=cancelled,
            duration_ms=duration_ms,
            cost_usd=round(usage.cost_usd, 4),
        )

        metadata = {"cancelled": True} if cancelled else {}
        return SkillReport(
            skill=skill.name,
            summary=generate_summary(skill.name, findings),
            findings=tuple(findings),
            usage=usage,
            duration_ms=duration_ms,
            skipped_files=tuple(preparation.skipped),
            failed_hunks=failed_hunks,
            metadata=metadata,
        )
