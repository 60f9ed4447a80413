"""Entry point for running the AI Review Agent.

This module provides the command-line entry point. It handles:
- Configuration loading and CLI overrides
- Logging setup with secret sanitization
- Building the local change set from git
- Running each skill and printing its report
- Applying suggested fixes when asked
- Reconciling findings with exported review comments
- Signal handling for graceful cancellation

Exit codes: 0 success, 1 findings at or above the fail-on threshold,
2 fatal error, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ai_review_agent._version import __version__

if TYPE_CHECKING:
    from ai_review_agent.config.schema import ReviewConfig
    from ai_review_agent.core.comment_reconciler import CommentReconciliation
    from ai_review_agent.models.finding import Finding, SkillReport
    from ai_review_agent.utils.async_helpers import CancellationToken

log = structlog.get_logger()

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2
EXIT_INTERRUPTED = 130

SEVERITY_CHOICES = ["critical", "high", "medium", "low", "info", "off"]


def setup_logging(
    debug: bool = False,
    log_format: str = "console",
    file_path: Path | None = None,
    file_enabled: bool = False,
    level: str | None = None,
) -> None:
    """Configure structured logging with secret sanitization.

    Args:
        debug: Enable debug logging if True (wins over ``level``)
        log_format: Output format ("json" or "console")
        file_path: Path to log file (if file logging enabled)
        file_enabled: Whether to enable file logging
        level: Log level from configuration
    """
    from ai_review_agent.utils.logging import LogFormat, LogLevel, configure_logging

    effective = LogLevel.DEBUG if debug else LogLevel((level or "WARNING").upper())

    configure_logging(
        level=effective,
        log_format=LogFormat(log_format.lower()),
        file_path=file_path,
        file_enabled=file_enabled,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai-review-agent",
        description="AI Review Agent - Run analysis skills over a code change",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: ai-review.yaml in the repository root)",
    )
    parser.add_argument(
        "-s",
        "--skill",
        action="append",
        default=None,
        help="Skill name or path to run (repeatable; default: configured or discovered skills)",
    )
    parser.add_argument("--base", default=None, help="Base ref to diff against (default: main/master)")
    parser.add_argument("--head", default=None, help="Head ref (default: the working tree)")
    parser.add_argument("--repo", type=Path, default=Path("."), help="Repository path (default: .)")
    parser.add_argument("--model", default=None, help="Analysis model override")
    parser.add_argument("--max-turns", type=int, default=None, help="Turn budget per hunk")
    parser.add_argument("--concurrency", type=int, default=None, help="Files analyzed concurrently")
    parser.add_argument(
        "--fail-on",
        choices=SEVERITY_CHOICES,
        default=None,
        help="Exit 1 when findings at or above this severity exist",
    )

    fixes = parser.add_mutually_exclusive_group()
    fixes.add_argument("--fix", action="store_true", help="Apply all suggested fixes")
    fixes.add_argument(
        "--interactive-fix",
        action="store_true",
        help="Review suggested fixes one at a time",
    )

    parser.add_argument(
        "--comments",
        type=Path,
        default=None,
        help="JSON export of existing review comments; skips already-posted findings and lists stale ones",
    )
    parser.add_argument("--json", action="store_true", help="Print reports as JSON")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--format",
        choices=["json", "console"],
        default="console",
        help="Log output format (default: console)",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    args = build_parser().parse_args(argv)
    if args.max_turns is not None and not 1 <= args.max_turns <= 50:
        build_parser().error("--max-turns must be between 1 and 50")
    if args.concurrency is not None and not 1 <= args.concurrency <= 50:
        build_parser().error("--concurrency must be between 1 and 50")
    return args


def render_report(report: SkillReport, findings: list[Finding]) -> list[str]:
    """Plain-text lines for one skill report."""
    from ai_review_agent.utils.security import sanitize_for_terminal

    lines = [f"== {report.skill} ==", report.summary]
    for finding in findings:
        where = ""
        if finding.location is not None:
            where = f" {finding.location.path}:{finding.location.start_line}"
        lines.append(f"  [{finding.severity}]{where} {sanitize_for_terminal(finding.title)}")
        for text in sanitize_for_terminal(finding.description).splitlines():
            lines.append(f"      {text}")
    if report.skipped_files:
        lines.append(f"  ({len(report.skipped_files)} file(s) skipped)")
    if report.failed_hunks:
        lines.append(f"  ({report.failed_hunks} hunk(s) failed to analyze)")
    if report.usage is not None and report.usage.total_tokens:
        lines.append(
            f"  tokens: {report.usage.input_tokens} in / {report.usage.output_tokens} out"
            f"  est. cost: ${report.usage.cost_usd:.4f}"
        )
    return lines


def report_to_dict(report: SkillReport, findings: list[Finding]) -> dict[str, Any]:
    data = asdict(report)
    data["findings"] = [asdict(f) for f in findings]
    return data


def render_reconciliation(reconciliation: CommentReconciliation) -> list[str]:
    """Plain-text lines describing duplicates and stale comments."""
    from ai_review_agent.utils.security import sanitize_for_terminal

    lines = ["== existing comments ==", f"{len(reconciliation.duplicates)} finding(s) already posted"]
    for comment in reconciliation.stale:
        lines.append(
            f"  stale: {comment.path}:{comment.line} {sanitize_for_terminal(comment.title)}"
            f" (thread {comment.thread_id})"
        )
    if not reconciliation.stale:
        lines.append("  no stale comments")
    return lines


def reconciliation_to_dict(reconciliation: CommentReconciliation) -> dict[str, Any]:
    return {
        "duplicates": [
            {"finding_id": m.finding.id, "comment_id": m.comment.id, "path": m.comment.path, "line": m.comment.line}
            for m in reconciliation.duplicates
        ],
        "stale_comments": [asdict(c) for c in reconciliation.stale],
    }


def apply_cli_overrides(config: ReviewConfig, args: argparse.Namespace) -> ReviewConfig:
    """Return a copy of the configuration with command-line values applied."""
    anthropic = config.anthropic
    if args.model:
        anthropic = anthropic.model_copy(update={"model": args.model})

    runner_updates: dict[str, Any] = {}
    if args.max_turns is not None:
        runner_updates["max_turns"] = args.max_turns
    if args.concurrency is not None:
        runner_updates["file_concurrency"] = args.concurrency

    output = config.output
    if args.fail_on is not None:
        output = output.model_copy(update={"fail_on": args.fail_on})

    return config.model_copy(
        update={
            "anthropic": anthropic,
            "runner": config.runner.model_copy(update=runner_updates),
            "output": output,
        }
    )


def _install_sigint(token: CancellationToken) -> None:
    """First Ctrl+C cancels the run; a second one falls through to the default."""
    loop = asyncio.get_running_loop()

    def on_sigint() -> None:
        log.warning("interrupt_received_cancelling")
        token.cancel()
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
    except (NotImplementedError, RuntimeError):
        # Not available on this platform/loop
        pass


def _remove_sigint() -> None:
    try:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
    except (NotImplementedError, RuntimeError):
        pass


async def run_review(args: argparse.Namespace) -> int:
    """Run every selected skill over the local change set.

    Returns:
        Exit code
    """
    from ai_review_agent.adapters.analysis.anthropic import AnthropicAnalysisProvider
    from ai_review_agent.adapters.comments.json_file import JsonFileCommentSource
    from ai_review_agent.config.loader import find_config_file, load_config
    from ai_review_agent.core.comment_reconciler import reconcile_comments
    from ai_review_agent.core.patch_applier import (
        apply_all_fixes,
        collect_fixable_findings,
        render_fix_summary,
        run_interactive_fix_flow,
    )
    from ai_review_agent.core.severity import filter_findings_by_severity, should_fail, sort_findings
    from ai_review_agent.core.skill_loader import discover_skills, resolve_skill
    from ai_review_agent.core.skill_runner import RunnerOptions, SkillRunner
    from ai_review_agent.models.diff import ReviewContext
    from ai_review_agent.utils.async_helpers import CancellationToken
    from ai_review_agent.utils.git import SafeGit
    from ai_review_agent.utils.logging import LogEventNames, log_context

    git = SafeGit(args.repo)
    repo_root = await git.repo_root()

    config_path = args.config or find_config_file(repo_root)
    config = apply_cli_overrides(load_config(config_path), args)

    setup_logging(
        debug=args.debug,
        log_format=args.format,
        file_path=config.logging.file.path,
        file_enabled=config.logging.file.enabled,
        level=config.logging.level,
    )

    skill_names = args.skill or config.skills
    if skill_names:
        skills = [resolve_skill(name, repo_root) for name in skill_names]
    else:
        skills = [found.skill for found in discover_skills(repo_root).values()]
    if not skills:
        log.error("no_skills_found", repo=str(repo_root))
        return EXIT_ERROR

    base = args.base or await git.default_branch()
    files = await git.changed_files(base, args.head)
    context = ReviewContext(
        repo_path=str(repo_root),
        files=tuple(files),
        base=base,
        head=args.head,
    )

    log.info(
        LogEventNames.REVIEW_STARTING,
        version=__version__,
        base=base,
        head=args.head,
        files=len(files),
        skills=[s.name for s in skills],
    )

    token = CancellationToken()
    provider = AnthropicAnalysisProvider(config.anthropic, config.retry)
    runner = SkillRunner(provider, RunnerOptions.from_config(config))
    reports: list[SkillReport] = []

    _install_sigint(token)
    try:
        for skill in skills:
            if token.is_cancelled:
                break
            with log_context(skill=skill.name):
                reports.append(await runner.run(skill, context, token))
    finally:
        _remove_sigint()
        await provider.close()

    reconciliation = None
    if args.comments is not None and not token.is_cancelled:
        reconciliation = await reconcile_comments(
            JsonFileCommentSource(args.comments),
            [f for r in reports for f in r.findings],
            files,
            config.output.max_stale_resolutions,
        )

    report_on = config.output.report_on

    def shown(report: SkillReport) -> list[Finding]:
        findings = filter_findings_by_severity(report.findings, report_on)
        if reconciliation is not None:
            findings = [f for f in findings if not reconciliation.is_duplicate(f)]
        return sort_findings(findings)

    if args.json:
        payload: Any = [report_to_dict(r, shown(r)) for r in reports]
        if reconciliation is not None:
            payload = {"reports": payload, **reconciliation_to_dict(reconciliation)}
        print(json.dumps(payload, indent=2, default=str))
    else:
        for report in reports:
            print("\n".join(render_report(report, shown(report))))
            print()
        if reconciliation is not None:
            print("\n".join(render_reconciliation(reconciliation)))
            print()

    if token.is_cancelled:
        log.warning(LogEventNames.REVIEW_INTERRUPTED, completed_skills=len(reports))
        return EXIT_INTERRUPTED

    if args.fix or args.interactive_fix:
        fixable = collect_fixable_findings(reports)
        if args.fix:
            summary = apply_all_fixes(fixable, repo_root)
        else:
            summary = run_interactive_fix_flow(fixable, repo_root)
        for line in render_fix_summary(summary):
            print(line, file=sys.stderr)

    fail_on = config.output.fail_on
    failed = any(should_fail(r, fail_on) for r in reports)
    log.info(LogEventNames.REVIEW_COMPLETE, reports=len(reports), failed=failed)
    return EXIT_FINDINGS if failed else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging with CLI options; reconfigured once config is loaded
    setup_logging(debug=args.debug, log_format=args.format)

    from ai_review_agent.utils.async_helpers import ReviewAgentError
    from ai_review_agent.utils.logging import LogEventNames

    try:
        return asyncio.run(run_review(args))
    except KeyboardInterrupt:
        log.warning("shutting_down")
        return EXIT_INTERRUPTED
    except FileNotFoundError as e:
        log.error("configuration_file_not_found", error=str(e))
        return EXIT_ERROR
    except (ReviewAgentError, ValueError) as e:
        log.error(LogEventNames.REVIEW_ERROR, error=str(e), error_type=type(e).__name__)
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as e:
        log.exception("fatal_error", error=str(e))
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
